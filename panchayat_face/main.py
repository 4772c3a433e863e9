import asyncio
import time
import cv2
from panchayat_face.config.settings import API_URL, FRAME_POLL_INTERVAL
from panchayat_face.core.camera import Camera, read_frame
from panchayat_face.core.face_recognizer import FaceRecognizer
from panchayat_face.database.db_manager import DatabaseManager
from panchayat_face.exceptions import CameraUnavailableError, LivelinessIncompleteError, PreconditionError
from panchayat_face.services.api_client import ApiClient, FlowKind, LocalSubmitter
from panchayat_face.services.enrollment_service import EnrollmentService
from panchayat_face.services.recognition_service import RecognitionService
from panchayat_face.services.verification_session import SessionState, VerificationContext, VerificationSession

WINDOW_NAME = "Face Verification"


def initialize_database():
    """
    Initialize database if it doesn't exist.
    """
    db_manager = DatabaseManager()

    if not db_manager.is_initialized():
        db_manager.initialize_db()
        print("Database initialized successfully.")
    else:
        print("Database connection verified.")
    return db_manager


def draw_progress(frame, session):
    """
    Overlay liveliness progress and session state on the frame.
    """
    snapshot = session.last_snapshot
    lines = [f"State: {session.state.value}"]
    if snapshot is not None:
        lines.append("Face: detected" if snapshot.face_detected else "Face: not detected")
        lines.append(f"Blinks: {snapshot.blink_count} {'OK' if snapshot.blink_verified else ''}")
        lines.append(f"Movement: {snapshot.movement_count} {'OK' if snapshot.movement_verified else ''}")
    if session.state is SessionState.VERIFIED:
        lines.append("Press S to submit")
    if session.failure_reason:
        lines.append(session.failure_reason)

    cv2.rectangle(frame, (5, 5), (420, 30 + 28 * len(lines)), (0, 0, 0), -1)
    for i, text in enumerate(lines):
        color = (0, 255, 0) if session.state is SessionState.VERIFIED else (0, 255, 255)
        cv2.putText(frame, text, (10, 35 + 28 * i), cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2)


def run_verification(flow, context, submitter, recognizer):
    """
    Run one verification session against the webcam until it succeeds or the user presses ESC.
    """
    # Imported here so the menu works for registry tasks without MediaPipe installed
    from panchayat_face.core.face_mesh import FaceMeshLandmarkSource

    landmark_source = FaceMeshLandmarkSource()
    camera = Camera()
    session = VerificationSession(flow, context, submitter, recognizer, camera=camera)

    try:
        session.start_camera()
    except (PreconditionError, CameraUnavailableError) as e:
        print(f"Error: {e.message}")
        landmark_source.close()
        return None

    cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_NORMAL)
    print("Blink naturally and move your head until both checks pass. Press ESC to cancel.")
    result = None
    try:
        while session.state is not SessionState.IDLE:
            started = time.monotonic()
            frame = read_frame(camera)
            if frame is None:
                if not camera.is_open:
                    break
                continue

            session.process_frame(landmark_source.detect(frame), frame, started)
            draw_progress(frame, session)
            cv2.imshow(WINDOW_NAME, frame)

            key = cv2.waitKey(max(1, int(FRAME_POLL_INTERVAL * 1000))) & 0xFF
            if key == 27:
                print("Verification cancelled by user")
                session.cancel()
                break
            if key in (ord('s'), ord('S')):
                try:
                    result = asyncio.run(session.submit())
                except LivelinessIncompleteError as e:
                    print(f"Error: {e.message}")
                    continue
                print(("✓ " if result.success else "✗ ") + result.message)
                if session.state is SessionState.SUCCEEDED:
                    break
                if session.state is SessionState.FAILED:
                    if not session.can_resume:
                        break
                    # Transport failures keep liveliness progress
                    session.resume()
                    print("Press S to try again.")
    finally:
        session.cancel()
        landmark_source.close()
        cv2.destroyAllWindows()
    return result


def build_submitter(enrollment_service, recognition_service):
    if API_URL:
        token = input("API token (optional): ").strip() or None
        return ApiClient(API_URL, auth_token=token)
    return LocalSubmitter(enrollment_service, recognition_service)


def main():
    # Initialize database on startup
    db_manager = initialize_database()

    enrollment_service = EnrollmentService(db_manager)
    recognition_service = RecognitionService(db_manager)
    submitter = build_submitter(enrollment_service, recognition_service)
    recognizer = None  # Model is loaded on first verification

    # Main menu loop
    while True:
        print()
        print("=" * 60)
        print("PANCHAYAT FACE VERIFICATION - MAIN MENU")
        print("=" * 60)
        print("1. Add citizen to registry")
        print("2. Register citizen face")
        print("3. Citizen face login")
        print("4. Mark meeting attendance")
        print("5. List citizens")
        print("6. Exit")
        print("=" * 60)
        choice = input("Select option: ").strip()

        if choice == "1":
            panchayat_id = input("Panchayat ID: ").strip()
            voter_id = input("Voter ID: ").strip()
            name = input("Name: ").strip()
            print(enrollment_service.add_citizen(voter_id, panchayat_id, name)["message"])

        elif choice in ("2", "3", "4"):
            context = VerificationContext(panchayat_id=input("Panchayat ID: ").strip())
            if choice == "2":
                flow = FlowKind.ENROLLMENT
                context.voter_id = input("Voter ID: ").strip()
            else:
                flow = FlowKind.LOGIN if choice == "3" else FlowKind.ATTENDANCE
                context.voter_id_last_four = input("Last 4 digits of voter ID: ").strip()
                if flow is FlowKind.ATTENDANCE:
                    context.meeting_id = input("Meeting ID: ").strip()
            if recognizer is None:
                recognizer = FaceRecognizer()
            run_verification(flow, context, submitter, recognizer)

        elif choice == "5":
            panchayat_id = input("Panchayat ID (Enter for all): ").strip() or None
            citizens = enrollment_service.list_citizens(panchayat_id)
            if not citizens:
                print("No citizens found.")
            for citizen in citizens:
                status = "registered" if citizen['is_registered'] else "not registered"
                print(f"  {citizen['panchayat_id']} / {citizen['voter_id']} - {citizen['name']} ({status})")

        elif choice == "6":
            print("Exiting.")
            break

        else:
            print("Invalid option.")


if __name__ == "__main__":
    main()
