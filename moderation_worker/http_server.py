import asyncio
import os
import uuid
import logging
from typing import AsyncGenerator, Optional
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
import uvicorn
from threading import Thread

from .errors import ConcurrencyConflict, JobNotFoundError
from .events import ProgressEmitter, format_sse
from .logging_setup import log_exception
from .models import Job, JobStatus, StorageTier
from .storage import resolve_within

logger = logging.getLogger("moderation_worker")

KEEPALIVE_SEC = 15.0


class JobRequest(BaseModel):
    """Register a local video for moderation"""
    source_path: str = Field(description="Readable local path of the uploaded video")
    mime_type: str = Field(description="Content type of the video")
    original_name: Optional[str] = Field(default=None, description="Name the file was uploaded with")
    frame_count: Optional[int] = Field(default=None, ge=1, le=100)


async def stream_events(request: Request, emitter: ProgressEmitter, job_id: str) -> AsyncGenerator[str, None]:
    """Relay a job's channel as Server-Sent Events until the client disconnects"""
    subscription = await emitter.subscribe_async(job_id)
    try:
        while True:
            if await request.is_disconnected():
                break
            try:
                message = await asyncio.wait_for(subscription.get(), timeout=KEEPALIVE_SEC)
                yield format_sse(message)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
    finally:
        emitter.unsubscribe(job_id, subscription)


def create_app(service) -> FastAPI:
    """Build the API around a WorkerService"""
    app = FastAPI(title="Moderation Worker API")

    def run_in_background(job_id: str, frame_count: Optional[int]) -> None:
        try:
            service.orchestrator.run(job_id, frame_count)
        except ConcurrencyConflict as e:
            logger.info(f"Skipped run for job {job_id}: {e}")
        except JobNotFoundError as e:
            logger.warning(str(e))
        except Exception as e:
            log_exception(logger, f"Background run for job {job_id} failed: {e}")

    def load_job(job_id: str) -> Job:
        job = service.job_store.get_job(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return job

    @app.get("/healthz")
    async def health_check():
        """Health check endpoint"""
        try:
            service.job_store.list_jobs(limit=1)
            return {"ok": True, "status": "healthy"}
        except Exception as e:
            logger.error(f"Health check failed: {str(e)}")
            raise HTTPException(status_code=503, detail="Job store unavailable")

    @app.get("/stats")
    async def get_stats():
        """Get worker statistics"""
        return service.get_stats()

    def local_source(path: str) -> Optional[str]:
        # Only files under DATA_DIR may be uploaded or deleted on a client's behalf
        return resolve_within(path, service.config.DATA_DIR)

    @app.post("/jobs", status_code=202)
    async def create_job(request: JobRequest, background_tasks: BackgroundTasks):
        """Register a video and start moderating it"""
        source_path = local_source(request.source_path)
        if source_path is None:
            raise HTTPException(status_code=400, detail="source_path must be inside the data directory")
        if not os.path.isfile(source_path):
            raise HTTPException(status_code=400, detail="source_path is not a file")

        job = service.job_store.create_job(Job(
            id=uuid.uuid4().hex,
            source_path=source_path,
            mime_type=request.mime_type,
            original_name=request.original_name
        ))
        background_tasks.add_task(run_in_background, job.id, request.frame_count)
        return job.to_dict()

    @app.get("/jobs/{job_id}")
    async def get_job(job_id: str):
        return load_job(job_id).to_dict()

    @app.post("/jobs/{job_id}/run", status_code=202)
    async def run_job(
        job_id: str,
        background_tasks: BackgroundTasks,
        frame_count: Optional[int] = Query(default=None, ge=1, le=100)
    ):
        """Resubmit a job for moderation"""
        job = load_job(job_id)
        if job.status == JobStatus.PROCESSING:
            raise HTTPException(status_code=409, detail="Job is already processing")
        background_tasks.add_task(run_in_background, job_id, frame_count)
        return {"id": job_id, "queued": True}

    @app.delete("/jobs/{job_id}")
    async def delete_job(job_id: str):
        """Delete a job together with its stored video"""
        job = load_job(job_id)
        if job.status == JobStatus.PROCESSING:
            raise HTTPException(status_code=409, detail="Job is processing")

        if job.storage_tier == StorageTier.REMOTE:
            if service.migrator is None:
                raise HTTPException(status_code=503, detail="Blob store not configured")
            try:
                service.migrator.remove(job)
            except Exception as e:
                log_exception(logger, f"Failed to delete remote video of job {job_id}: {e}")
                raise HTTPException(status_code=502, detail="Could not delete stored video")
        else:
            source_path = local_source(job.source_path)
            if source_path is not None and os.path.isfile(source_path):
                os.remove(source_path)

        service.job_store.delete_job(job_id)
        return {"id": job_id, "deleted": True}

    @app.get("/jobs/{job_id}/events")
    async def job_events(job_id: str, request: Request):
        """Live progress for a job; only messages published after connecting"""
        load_job(job_id)
        return StreamingResponse(
            stream_events(request, service.emitter, job_id),
            media_type="text/event-stream"
        )

    @app.get("/jobs/{job_id}/url")
    async def job_url(job_id: str):
        """Where the job's video can be played back from"""
        job = load_job(job_id)
        if service.migrator is not None:
            url = service.migrator.playback_url(job)
            if url:
                return {"storage_tier": job.storage_tier.value, "url": url}
        return {"storage_tier": job.storage_tier.value, "path": job.source_path}

    return app


class HealthServer:
    def __init__(self, service, port: int = 8000):
        self.service = service
        self.port = port
        self.app = create_app(service)
        self.server_thread = None
        self.running = False

    def start(self):
        """Start the HTTP server in a background thread"""
        if self.running:
            return

        def run_server():
            try:
                uvicorn.run(
                    self.app,
                    host="0.0.0.0",
                    port=self.port,
                    log_level="warning",  # Reduce uvicorn logging
                    access_log=False
                )
            except Exception as e:
                logger.error(f"HTTP server error: {str(e)}")

        self.server_thread = Thread(target=run_server, daemon=True)
        self.server_thread.start()
        self.running = True

        logger.info(f"HTTP server started on port {self.port}")

    def stop(self):
        """Stop the HTTP server"""
        self.running = False
        logger.info("HTTP server stopped")


def start_health_server(service) -> Optional[HealthServer]:
    """Start the HTTP server if enabled"""
    if service.config.ENABLE_HTTP_SERVER:
        server = HealthServer(service, service.config.HTTP_PORT)
        server.start()
        return server
    return None
