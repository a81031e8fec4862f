#!/usr/bin/env python3
"""
Face attendance tracker entry point.
Runs the camera session, the API server and the admin commands.
"""
import argparse
import getpass
import signal
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from attendance.auth import build_password_gate, clear_with_password, export_with_password
from attendance.errors import AttendanceError, AuthorizationError
from attendance.reconciler import AttendanceReconciler
from attendance.records import compute_stats, filter_records
from attendance.repository import AttendanceRepository
from attendance.session import AttendanceSession
from utils.config import config, validate_config
from utils.logger import logger


def build_repository(cfg=None) -> AttendanceRepository:
    """Storage backend selected by STORAGE_BACKEND."""
    cfg = cfg or config
    if cfg.storage.backend == "supabase":
        from attendance.supabase_repository import SupabaseAttendanceRepository
        return SupabaseAttendanceRepository.from_credentials(cfg.storage.supabase_url, cfg.storage.supabase_key)

    from attendance.sqlite_repository import SQLiteAttendanceRepository
    return SQLiteAttendanceRepository(cfg.storage.database_path)


def build_gate(repository: AttendanceRepository):
    client = getattr(repository, 'client', None)
    return build_password_gate(config.security, supabase_client=client)


def build_session(repository: AttendanceRepository, camera_id: Optional[int] = None) -> AttendanceSession:
    """Session wired to the webcam and the dlib face model."""
    from camera.stream_handler import CameraStream
    from faces.face_detector import FaceDetector

    try:
        detector = FaceDetector()
    except AttendanceError as e:
        logger.error(f"Face detector unavailable: {e}")
        detector = None

    session = AttendanceSession(
        repository=repository,
        detector=detector,
        camera=CameraStream(camera_id),
        reconciler=AttendanceReconciler(repository),
    )
    session.load_models()
    return session


class AttendanceTracker:
    """Runs a session in the foreground with an optional preview window."""

    def __init__(self, session: AttendanceSession, gui_mode: bool = True):
        self.session = session
        self.gui_mode = gui_mode
        self.running = False
        self.start_time = time.time()

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def start(self):
        if self.session.error:
            logger.error(f"Cannot start: {self.session.error}")
            return

        logger.info("Starting attendance tracker.")
        try:
            self.session.start()
            self.running = True
            self.start_time = time.time()

            if self.gui_mode:
                self._run_with_gui()
            else:
                self._run_headless()

        except KeyboardInterrupt:
            logger.info("Received interrupt signal")
        except AttendanceError as e:
            logger.error(f"Attendance session failed: {e}")
        finally:
            self.stop()

    def _run_with_gui(self):
        """Show the camera feed with the current detection drawn on it."""
        import cv2
        from faces.face_detector import draw_overlay

        cv2.namedWindow('Attendance', cv2.WINDOW_NORMAL)
        try:
            while self.running and self.session.running:
                frame = self.session.camera.peek_frame()
                if frame is not None:
                    cv2.imshow('Attendance', self._render(frame, draw_overlay))

                key = cv2.waitKey(30) & 0xFF
                if key == ord('q'):
                    logger.info("Quit key pressed")
                    break
                elif key == ord('s') and frame is not None:
                    self._save_frame(frame)
                elif key == ord('p'):
                    self._print_status()
        finally:
            cv2.destroyAllWindows()

    def _render(self, frame, draw_overlay):
        import cv2

        frame = frame.copy()
        face = self.session.last_face
        event = self.session.current_detection
        if face is not None and event is not None:
            label = event.name
            if event.confidence:
                label += f" ({event.confidence * 100:.0f}%)"
            if event.is_late:
                label += " LATE"
            frame = draw_overlay(frame, face, label, recognized=event.status.value == "success")

        for i, item in enumerate(self.session.get_recent_attendance()[:5]):
            line = f"{item.timestamp.strftime('%H:%M:%S')} {item.name}{' (late)' if item.is_late else ''}"
            cv2.putText(frame, line, (10, 25 + i * 22), cv2.FONT_HERSHEY_SIMPLEX,
                        0.55, (255, 255, 255), 1, cv2.LINE_AA)
        return frame

    def _run_headless(self):
        logger.info("Running attendance session in headless mode.")
        last_status = time.time()
        while self.running and self.session.running:
            time.sleep(0.5)
            if time.time() - last_status >= 30:
                self._print_status()
                last_status = time.time()

    def _save_frame(self, frame):
        import cv2

        directory = Path(config.export.reports_directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"frame_{datetime.now().strftime('%Y%m%d_%H%M%S')}.jpg"
        cv2.imwrite(str(path), frame)
        logger.info(f"Saved frame to {path}")

    def _print_status(self):
        status = self.session.get_status()
        runtime = int(time.time() - self.start_time)
        print(f"Runtime: {runtime}s | Cycles: {status['cycles_run']} | "
              f"Recent: {status['recent_count']} | Faces: {status['registered_faces']}")

    def stop(self):
        if not self.running:
            return
        self.running = False
        self.session.stop()
        logger.log_event("SESSION_COMPLETE", {
            'runtime_seconds': time.time() - self.start_time,
            'cycles': self.session.cycles_run,
            'recorded': len(self.session.get_recent_attendance()),
        })
        logger.info("Attendance tracker stopped")

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}")
        self.stop()
        sys.exit(0)


def _password(args) -> str:
    return args.password if args.password is not None else getpass.getpass("Password: ")


def cmd_run(args) -> int:
    repository = build_repository()
    session = build_session(repository, args.camera)
    AttendanceTracker(session, gui_mode=not args.headless).start()
    return 0


def cmd_serve(args) -> int:
    import uvicorn
    from api.api_server import create_app

    repository = build_repository()
    session = build_session(repository, args.camera)
    app = create_app(session, repository, build_gate(repository))

    host = args.host or config.api.host
    port = args.port or config.api.port
    logger.info(f"Starting API server on {host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port, log_level="info")
    finally:
        session.stop()
    return 0


def cmd_register(args) -> int:
    from faces.face_detector import FaceDetector

    descriptor = FaceDetector().encode_image_file(args.image)
    person = build_repository().register_person(args.name, args.student_class, descriptor)
    print(f"Registered {person.name} ({person.student_class}) with id {person.id}")
    return 0


def cmd_export(args) -> int:
    repository = build_repository()
    path = export_with_password(build_gate(repository), repository, _password(args),
                                args.output, limit=args.limit,
                                search_term=args.search, filter_date=args.date)
    print(f"Exported attendance records to {path}")
    return 0


def cmd_clear(args) -> int:
    repository = build_repository()
    deleted = clear_with_password(build_gate(repository), repository, _password(args))
    print(f"Deleted {deleted} attendance records")
    return 0


def cmd_late_comers(args) -> int:
    late_comers = build_repository().list_late_comers()
    if not late_comers:
        print("No late comers recorded")
        return 0
    print(f"{'Name':<25} {'Class':<12} {'Late':>5}")
    for late_comer in late_comers:
        print(f"{late_comer.student_name:<25} {late_comer.student_class:<12} {late_comer.total_late_count:>5}")
    return 0


def cmd_records(args) -> int:
    records = build_repository().list_records(limit=args.limit)
    stats = compute_stats(records)
    for record in filter_records(records, args.search, args.date):
        created = record.created_at.strftime('%Y-%m-%d %H:%M:%S') if record.created_at else ''
        late = 'Late' if record.is_late else 'On Time'
        print(f"{created:<20} {record.student_name:<25} {record.student_class:<12} {late:<8} "
              f"late={record.late_count}")
    print(f"Total: {stats['total_records']} | Today: {stats['today_records']} | "
          f"Members: {stats['unique_members']} | Avg/day: {stats['average_attendance']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Face recognition attendance tracker")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the camera session")
    run.add_argument("--camera", "-c", type=int, default=None, help="Camera device ID")
    run.add_argument("--headless", "-hl", action="store_true", help="Run without preview window")
    run.set_defaults(func=cmd_run)

    serve = subparsers.add_parser("serve", help="Run the API server")
    serve.add_argument("--camera", "-c", type=int, default=None, help="Camera device ID")
    serve.add_argument("--host", default=None, help="API host")
    serve.add_argument("--port", "-p", type=int, default=None, help="API port")
    serve.set_defaults(func=cmd_serve)

    register = subparsers.add_parser("register", help="Register a person from a photo")
    register.add_argument("--name", required=True)
    register.add_argument("--class", dest="student_class", required=True)
    register.add_argument("--image", required=True, help="Photo with exactly one face")
    register.set_defaults(func=cmd_register)

    export = subparsers.add_parser("export", help="Export records to Excel")
    export.add_argument("--password", default=None)
    export.add_argument("--output", "-o", default=None, help="Output .xlsx path")
    export.add_argument("--search", default="", help="Name or class filter")
    export.add_argument("--date", default=None, help="YYYY-MM-DD")
    export.add_argument("--limit", type=int, default=config.export.records_limit,
                        help="Filter within the most recent N records")
    export.set_defaults(func=cmd_export)

    clear = subparsers.add_parser("clear", help="Delete all attendance records")
    clear.add_argument("--password", default=None)
    clear.set_defaults(func=cmd_clear)

    late = subparsers.add_parser("late-comers", help="List the late-comers roster")
    late.set_defaults(func=cmd_late_comers)

    records = subparsers.add_parser("records", help="List recent records")
    records.add_argument("--search", default="", help="Name or class filter")
    records.add_argument("--date", default=None, help="YYYY-MM-DD")
    records.add_argument("--limit", type=int, default=config.export.records_limit)
    records.set_defaults(func=cmd_records)

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if not validate_config():
        return 1
    config.ensure_directories()

    try:
        return args.func(args)
    except AuthorizationError as e:
        logger.error(f"Not authorized: {e}")
        return 2
    except ValueError as e:
        logger.error(str(e))
        return 1
    except AttendanceError as e:
        logger.error(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
