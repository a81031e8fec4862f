"""
REST API for the attendance tracker.
"""
import io
import time
from datetime import date
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from attendance.auth import PasswordGate, clear_with_password, export_with_password
from attendance.errors import AcquisitionError, AuthorizationError, DescriptorError, StorageError
from attendance.export import default_export_filename
from attendance.records import compute_stats, filter_records
from attendance.repository import AttendanceRepository
from attendance.session import AttendanceSession
from utils.config import config
from utils.logger import logger

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def create_app(session: AttendanceSession, repository: AttendanceRepository,
               gate: PasswordGate) -> FastAPI:
    """Build the API around an existing session, repository and password gate."""
    app = FastAPI(
        title="Face Attendance API",
        description="REST API for the face recognition attendance tracker",
        version="1.0.0"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(request: Request, exc: AuthorizationError):
        return JSONResponse(status_code=401, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(f"Storage error on {request.url.path}: {exc}")
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(AcquisitionError)
    async def acquisition_error_handler(request: Request, exc: AcquisitionError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "timestamp": time.time()}

    @app.get("/api/status")
    def get_status():
        status = session.get_status()
        status['camera_info'] = session.camera.get_camera_info() if session.camera else {}
        status['recognition_stats'] = session.matcher.get_recognition_statistics()
        detection_stats = getattr(session.detector, 'get_detection_statistics', None)
        status['detection_stats'] = detection_stats() if detection_stats else {}
        status['attendance_summary'] = logger.get_attendance_summary()
        return status

    @app.post("/api/session/start")
    def start_session():
        if session.running:
            return {"success": False, "message": "Session is already running"}
        if not session.models_loaded:
            session.load_models()
        session.start()
        return {"success": True, "message": "Session started"}

    @app.post("/api/session/stop")
    def stop_session():
        if not session.running:
            return {"success": False, "message": "Session is already stopped"}
        session.stop()
        return {"success": True, "message": "Session stopped"}

    @app.get("/api/detection/current")
    def current_detection():
        event = session.current_detection
        return {"detection": event.to_dict() if event else None}

    @app.get("/api/attendance/recent")
    def recent_attendance():
        return [event.to_dict() for event in session.get_recent_attendance()]

    @app.get("/api/records")
    def list_records(search: str = "", filter_date: Optional[str] = Query(None, alias="date")):
        try:
            records = filter_records(
                repository.list_records(limit=config.export.records_limit), search, filter_date
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid date: {e}")
        return [record.to_dict() for record in records]

    @app.get("/api/records/stats")
    def records_stats():
        return compute_stats(repository.list_records(limit=config.export.records_limit))

    @app.get("/api/late-comers")
    def late_comers():
        return [late_comer.to_dict() for late_comer in repository.list_late_comers()]

    @app.post("/api/records/export")
    def export_records(password: str = Form(""), search: str = Form(""),
                       filter_date: Optional[str] = Form(None, alias="date")):
        try:
            day = date.fromisoformat(filter_date) if filter_date else None
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid date: {e}")

        buffer = io.BytesIO()
        try:
            export_with_password(gate, repository, password, buffer,
                                 limit=config.export.records_limit,
                                 search_term=search, filter_date=day)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))

        filename = default_export_filename(date.today())
        return Response(
            content=buffer.getvalue(),
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/api/records/clear")
    def clear_records(password: str = Form("")):
        deleted = clear_with_password(gate, repository, password)
        return {"success": True, "deleted": deleted}

    @app.post("/api/persons", status_code=201)
    def register_person(name: str = Form(...), student_class: str = Form(...),
                        image: UploadFile = File(...)):
        if not name.strip() or not student_class.strip():
            raise HTTPException(status_code=400, detail="Name and class are required")
        if session.detector is None:
            raise HTTPException(status_code=503, detail="Face detection model is not available")

        try:
            descriptor = session.detector.encode_image_bytes(image.file.read())
        except DescriptorError as e:
            raise HTTPException(status_code=422, detail=str(e))

        person = repository.register_person(name.strip(), student_class.strip(), descriptor)
        session.load_models()
        return person.to_dict()

    return app
