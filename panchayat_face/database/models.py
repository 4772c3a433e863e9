import re
from datetime import datetime
from pathlib import Path
import numpy as np
from panchayat_face.config.paths import EMBEDDINGS_DIR
from panchayat_face.database.db_manager import DatabaseManager


def safe_filename(value: str):
    """
    Replace characters that are not allowed in file names.
    """
    value = re.sub(r'[/\\:*?"<>|]', "_", value)
    # "." and ".." would resolve to an existing directory
    if value in ("", ".", ".."):
        return "_" * max(len(value), 1)
    return value


def _escape_like(value: str):
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class Citizen:
    """
    Citizen registry model for database operations.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def create(self, voter_id: str, panchayat_id: str, name: str = None):
        """
        Create a new citizen in a panchayat.
        """
        query = """
            INSERT INTO citizens (voter_id, panchayat_id, name)
            VALUES (?, ?, ?)
        """
        try:
            self.db.execute_update(query, (voter_id, panchayat_id, name))
            return True
        except Exception as e:
            self.db.logger.error(f"Failed to create citizen {voter_id} in {panchayat_id}: {type(e).__name__}: {e}")
            raise

    def get(self, voter_id: str, panchayat_id: str):
        """
        Get a citizen by voter ID within a panchayat.
        """
        query = "SELECT * FROM citizens WHERE voter_id = ? AND panchayat_id = ?"
        result = self.db.execute_query(query, (voter_id, panchayat_id))
        if result:
            return dict(result[0])
        return None

    def find_registered_by_last_four(self, panchayat_id: str, last_four: str):
        """
        Registered citizens of a panchayat whose voter ID ends with last_four (case-insensitive).
        """
        query = """
            SELECT * FROM citizens
            WHERE panchayat_id = ? AND is_registered = 1
              AND voter_id LIKE ? ESCAPE '\\'
            ORDER BY id
        """
        result = self.db.execute_query(query, (panchayat_id, "%" + _escape_like(last_four)))
        return [dict(row) for row in result]

    def mark_registered(self, voter_id: str, panchayat_id: str, face_image_path: str = None):
        """
        Flag a citizen as face-registered.
        A None face_image_path keeps the image of an earlier enrollment.
        """
        query = """
            UPDATE citizens
            SET is_registered = 1, face_image_path = COALESCE(?, face_image_path), registration_date = ?
            WHERE voter_id = ? AND panchayat_id = ?
        """
        self.db.execute_update(query, (face_image_path, datetime.now().isoformat(timespec="seconds"),
                                       voter_id, panchayat_id))

    def get_all(self, panchayat_id: str = None):
        """
        Get all citizens, optionally limited to one panchayat.
        """
        if panchayat_id:
            query = "SELECT * FROM citizens WHERE panchayat_id = ? ORDER BY voter_id"
            result = self.db.execute_query(query, (panchayat_id,))
        else:
            query = "SELECT * FROM citizens ORDER BY panchayat_id, voter_id"
            result = self.db.execute_query(query)

        return [dict(row) for row in result]


class FaceTemplate:
    """
    Face template model for database operations.
    Descriptors are stored as EMBEDDINGS_DIR/citizen_<citizens.id>.npy.
    """

    def __init__(self, db_manager: DatabaseManager, embeddings_dir=None):
        self.db = db_manager
        self.embeddings_dir = Path(embeddings_dir) if embeddings_dir is not None else EMBEDDINGS_DIR

    def save(self, voter_id: str, panchayat_id: str, descriptor):
        """
        Store (or replace) the descriptor of a citizen.
        The file is named by the citizen's row id, never by the raw ids.
        Returns the embedding file path.
        """
        rows = self.db.execute_query(
            "SELECT id FROM citizens WHERE voter_id = ? AND panchayat_id = ?", (voter_id, panchayat_id)
        )
        if not rows:
            raise ValueError(f"Citizen {voter_id} not found in panchayat {panchayat_id}")

        self.embeddings_dir.mkdir(parents=True, exist_ok=True)
        embedding_path = self.embeddings_dir / f"citizen_{rows[0]['id']}.npy"
        np.save(embedding_path, np.asarray(descriptor, dtype="float64"))

        query = """
            INSERT INTO face_templates (voter_id, panchayat_id, embedding_path)
            VALUES (?, ?, ?)
            ON CONFLICT (voter_id, panchayat_id)
            DO UPDATE SET embedding_path = excluded.embedding_path, created_at = CURRENT_TIMESTAMP
        """
        self.db.execute_update(query, (voter_id, panchayat_id, str(embedding_path)))
        return embedding_path

    def get_descriptors(self, panchayat_id: str, exclude_voter_id: str = None, voter_ids=None):
        """
        (voter_id, descriptor) pairs for one panchayat, in enrollment order.

        Args:
            panchayat_id: Tenant to load; templates of other panchayats are never returned
            exclude_voter_id: Skip this citizen (used by the duplicate check)
            voter_ids: Only load these citizens
        """
        query = "SELECT voter_id, embedding_path FROM face_templates WHERE panchayat_id = ?"
        params = [panchayat_id]
        if exclude_voter_id is not None:
            query += " AND voter_id != ?"
            params.append(exclude_voter_id)
        query += " ORDER BY id"
        rows = self.db.execute_query(query, tuple(params))

        wanted = set(voter_ids) if voter_ids is not None else None
        descriptors = []
        for row in rows:
            if wanted is not None and row['voter_id'] not in wanted:
                continue
            embedding_path = Path(row['embedding_path'])
            if not embedding_path.exists():
                self.db.logger.warning(f"Embedding file not found: {embedding_path}")
                continue
            descriptors.append((row['voter_id'], np.load(embedding_path)))
        return descriptors

    def delete(self, voter_id: str, panchayat_id: str):
        """
        Remove a citizen's template and its embedding file.
        """
        query = "SELECT embedding_path FROM face_templates WHERE voter_id = ? AND panchayat_id = ?"
        for row in self.db.execute_query(query, (voter_id, panchayat_id)):
            Path(row['embedding_path']).unlink(missing_ok=True)
        self.db.execute_update(
            "DELETE FROM face_templates WHERE voter_id = ? AND panchayat_id = ?",
            (voter_id, panchayat_id),
        )


class Attendance:
    """
    Meeting attendance model for database operations.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    def create(self, meeting_id: str, voter_id: str, panchayat_id: str,
               verification_method: str, match_distance: float = None, status: str = 'PRESENT'):
        """
        Create an attendance record. Returns the stored record.
        """
        query = """
            INSERT INTO attendance (meeting_id, voter_id, panchayat_id, verification_method, status, match_distance)
            VALUES (?, ?, ?, ?, ?, ?)
        """
        self.db.execute_update(query, (meeting_id, voter_id, panchayat_id,
                                       verification_method, status, match_distance))
        return self.get(meeting_id, voter_id, panchayat_id)

    def get(self, meeting_id: str, voter_id: str, panchayat_id: str):
        query = """
            SELECT * FROM attendance
            WHERE meeting_id = ? AND voter_id = ? AND panchayat_id = ?
        """
        result = self.db.execute_query(query, (meeting_id, voter_id, panchayat_id))
        if result:
            return dict(result[0])
        return None

    def get_by_meeting(self, meeting_id: str, panchayat_id: str):
        """
        Get attendance records of a meeting.
        """
        query = """
            SELECT a.*, c.name
            FROM attendance a
            JOIN citizens c ON a.voter_id = c.voter_id AND a.panchayat_id = c.panchayat_id
            WHERE a.meeting_id = ? AND a.panchayat_id = ?
            ORDER BY a.check_in_time
        """
        result = self.db.execute_query(query, (meeting_id, panchayat_id))
        return [dict(row) for row in result]
