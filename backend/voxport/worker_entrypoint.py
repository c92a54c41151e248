"""Export worker entrypoint.

Runs a health check server alongside the export polling loop:

    python -m voxport.worker_entrypoint
"""

import logging
import signal
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

from voxport.config import get_settings
from voxport.models.database import init_db
from voxport.render.encoder import FFmpegEncoder
from voxport.render.frame_renderer import FrameRenderer
from voxport.render.worker_pool import FrameWorkerPool
from voxport.services.job_store import ExportJobStore
from voxport.services.storage_service import get_storage_service
from voxport.services.template_service import TemplateService
from voxport.worker.orchestrator import ExportWorker

logger = logging.getLogger(__name__)


class HealthHandler(BaseHTTPRequestHandler):
    """Simple health check handler."""

    def do_GET(self):
        if self.path == "/health" or self.path == "/":
            self.send_response(200)
            self.send_header("Content-type", "text/plain")
            self.end_headers()
            self.wfile.write(b"OK")
        else:
            self.send_response(404)
            self.end_headers()

    def log_message(self, format, *args):
        # Suppress access logs
        pass


def start_health_server(port: int) -> HTTPServer:
    """Serve /health from a daemon thread."""
    server = HTTPServer(("0.0.0.0", port), HealthHandler)
    thread = threading.Thread(target=server.serve_forever, name="health-server", daemon=True)
    thread.start()
    logger.info(f"Health server running on port {port}")
    return server


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )
    settings = get_settings()

    init_db()
    health = start_health_server(settings.health_port)

    renderer = FrameRenderer(scale=settings.render_scale, font_path=settings.font_path)
    pool = FrameWorkerPool(renderer.render, size=settings.render_pool_size or None)
    worker = ExportWorker(
        store=ExportJobStore(),
        storage=get_storage_service(settings),
        encoder=FFmpegEncoder(settings),
        pool=pool,
        templates=TemplateService(),
        settings=settings,
    )

    def shutdown(signum, frame):
        logger.info(f"Received signal {signum}, shutting down worker...")
        worker.stop()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    pool.start()
    try:
        worker.run_forever()
    finally:
        pool.terminate()
        health.shutdown()
        logger.info("Worker shutdown complete")


if __name__ == "__main__":
    main()
