import logging
import math
import random
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Literal, TypedDict

from rollcall.config import (
    ACTIVE_LESSON_HOURS,
    DB_PATH,
    DEFAULT_DURATION_MINUTES,
    LICENSE_TRIAL_DAYS,
    OTP_WINDOW_MINUTES,
)

logger = logging.getLogger(__name__)

AttendanceStatus = Literal["pending", "present", "absent"]

StudentMarkDecision = Literal[
    "PRESENT_SET",
    "LESSON_NOT_FOUND",
    "LESSON_NOT_ACTIVE",
    "OTP_DISABLED",
    "OTP_EXPIRED",
    "INVALID_OTP",
    "ALREADY_PRESENT",
]

LecturerMarkDecision = Literal[
    "LECTURER_PRESENT_SET",
    "LESSON_NOT_FOUND",
    "INVALID_OTP",
    "ALREADY_PRESENT",
]

# Columns added to `lessons` after the first release; older databases are
# migrated in place on startup.
LESSON_MIGRATION_COLUMNS: list[tuple[str, str]] = [
    ("end_time", "TEXT"),
    ("scheduled_start", "TEXT"),
    ("scheduled_end", "TEXT"),
    ("lecturer_otp", "TEXT"),
    ("lecturer_present", "INTEGER DEFAULT 0"),
    ("otp_enabled", "INTEGER DEFAULT 0"),
]

REP_NAME_KEY = "rep_name"
LICENSE_EXPIRY_KEY = "license_expiry"


class StudentEnrollment(TypedDict):
    id: int
    lesson_id: int | None
    attendance_status: AttendanceStatus | None


class StudentMarkResult(TypedDict):
    decision_code: StudentMarkDecision
    lesson_id: int
    student_id: int
    status: AttendanceStatus | None
    marked_at: str | None


class UnitDeletion(TypedDict):
    lessons_deleted: int
    attendance_deleted: int


def connect_db():
    conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
    # cascades on students/units/lessons depend on this
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _otp_window_closed(start_time: str | None, now: datetime) -> bool:
    started = _parse_timestamp(start_time)
    if started is None:
        return True
    return now - started > timedelta(minutes=OTP_WINDOW_MINUTES)


def generate_otp() -> str:
    """Six-digit attendance code. Not meant to be unguessable."""
    return str(random.randint(100000, 999999))


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        admission_number TEXT UNIQUE NOT NULL
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS units (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        lecturer TEXT NOT NULL
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS lessons (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        unit_id INTEGER,
        date TEXT NOT NULL,              -- YYYY-MM-DD
        venue TEXT NOT NULL,
        duration INTEGER,                -- minutes
        start_time TEXT,                 -- ISO-8601, UTC
        end_time TEXT,
        scheduled_start TEXT,            -- display only
        scheduled_end TEXT,
        lecturer_otp TEXT,
        lecturer_present INTEGER DEFAULT 0,
        otp_enabled INTEGER DEFAULT 0,
        FOREIGN KEY (unit_id) REFERENCES units(id) ON DELETE CASCADE
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        lesson_id INTEGER,
        student_id INTEGER,
        otp TEXT NOT NULL,
        status TEXT DEFAULT 'pending',   -- pending | present | absent
        marked_at TEXT,
        FOREIGN KEY (lesson_id) REFERENCES lessons(id) ON DELETE CASCADE,
        FOREIGN KEY (student_id) REFERENCES students(id) ON DELETE CASCADE,
        UNIQUE(lesson_id, student_id)
    )
    """)

    _migrate_lesson_columns(cursor)
    _ensure_license_expiry(cursor)

    conn.commit()
    conn.close()


def _migrate_lesson_columns(cursor: sqlite3.Cursor) -> None:
    cursor.execute("PRAGMA table_info(lessons)")
    existing = {str(row[1]) for row in cursor.fetchall()}
    for col_name, col_def in LESSON_MIGRATION_COLUMNS:
        if col_name in existing:
            continue
        logger.info("Migrating: adding column %s to lessons table", col_name)
        cursor.execute(f"ALTER TABLE lessons ADD COLUMN {col_name} {col_def}")


def _ensure_license_expiry(cursor: sqlite3.Cursor) -> None:
    cursor.execute("SELECT value FROM settings WHERE key = ?", (LICENSE_EXPIRY_KEY,))
    if cursor.fetchone():
        return
    expiry = _utcnow() + timedelta(days=LICENSE_TRIAL_DAYS)
    cursor.execute(
        "INSERT INTO settings (key, value) VALUES (?, ?)",
        (LICENSE_EXPIRY_KEY, _iso(expiry)),
    )


# -----------------------------
# Students
# -----------------------------
def get_all_students():
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, name, admission_number
        FROM students
        ORDER BY name ASC
    """)
    rows = cur.fetchall()
    conn.close()
    return rows


def get_student_by_id(student_id: int):
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, name, admission_number
        FROM students
        WHERE id = ?
    """, (student_id,))
    row = cur.fetchone()
    conn.close()
    return row


def add_student(name: str, admission_number: str, *, now: datetime | None = None) -> StudentEnrollment:
    """
    Register a student. Raises sqlite3.IntegrityError on a duplicate
    admission number.

    If a lesson is active the student is enrolled into it straight away:
    pending while the OTP window is open, absent once it has closed.
    """
    marker = now or _utcnow()
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute("""
            INSERT INTO students (name, admission_number)
            VALUES (?, ?)
        """, (name, admission_number))
        student_id = int(cur.lastrowid)

        lesson_id = None
        status: AttendanceStatus | None = None
        active = _get_active_lesson_row(cur, marker)
        if active:
            lesson_id = int(active[0])
            status = "absent" if _otp_window_closed(active[1], marker) else "pending"
            cur.execute("""
                INSERT INTO attendance (lesson_id, student_id, otp, status)
                VALUES (?, ?, ?, ?)
            """, (lesson_id, student_id, generate_otp(), status))
            logger.info("Enrolled new student %s into active lesson %s as %s", student_id, lesson_id, status)

        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    return {"id": student_id, "lesson_id": lesson_id, "attendance_status": status}


def update_student(student_id: int, name: str, admission_number: str) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute("""
            UPDATE students
            SET name = ?, admission_number = ?
            WHERE id = ?
        """, (name, admission_number, student_id))
        changed = cur.rowcount > 0
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()
    return changed


def delete_student(student_id: int) -> bool:
    # Child rows go first: databases from before the cascade FKs still
    # reject deleting a referenced student.
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute("DELETE FROM attendance WHERE student_id = ?", (student_id,))
        attendance_rows = cur.rowcount
        cur.execute("DELETE FROM students WHERE id = ?", (student_id,))
        deleted = cur.rowcount > 0
        if not deleted:
            conn.rollback()
            return False
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    logger.info("Deleted student %s and %s attendance records", student_id, attendance_rows)
    return True


# -----------------------------
# Units
# -----------------------------
def get_all_units():
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, name, lecturer
        FROM units
        ORDER BY name ASC
    """)
    rows = cur.fetchall()
    conn.close()
    return rows


def get_unit_by_id(unit_id: int):
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, name, lecturer
        FROM units
        WHERE id = ?
    """, (unit_id,))
    row = cur.fetchone()
    conn.close()
    return row


def add_unit(name: str, lecturer: str) -> int:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO units (name, lecturer)
        VALUES (?, ?)
    """, (name, lecturer))
    unit_id = int(cur.lastrowid)
    conn.commit()
    conn.close()
    return unit_id


def update_unit(unit_id: int, name: str, lecturer: str) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        UPDATE units
        SET name = ?, lecturer = ?
        WHERE id = ?
    """, (name, lecturer, unit_id))
    changed = cur.rowcount > 0
    conn.commit()
    conn.close()
    return changed


def delete_unit(unit_id: int) -> UnitDeletion | None:
    """
    Delete a unit together with its lessons and their attendance rows.
    Returns None when the unit does not exist.
    """
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute("SELECT id FROM units WHERE id = ?", (unit_id,))
        if not cur.fetchone():
            return None

        # Explicit child deletes, as with students: older schemas lack the cascades.
        cur.execute("""
            DELETE FROM attendance
            WHERE lesson_id IN (SELECT id FROM lessons WHERE unit_id = ?)
        """, (unit_id,))
        attendance_deleted = cur.rowcount
        cur.execute("DELETE FROM lessons WHERE unit_id = ?", (unit_id,))
        lessons_deleted = cur.rowcount
        cur.execute("DELETE FROM units WHERE id = ?", (unit_id,))
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    logger.info(
        "Deleted unit %s with %s lessons and %s attendance records",
        unit_id,
        lessons_deleted,
        attendance_deleted,
    )
    return {"lessons_deleted": lessons_deleted, "attendance_deleted": attendance_deleted}


# -----------------------------
# Settings
# -----------------------------
def get_setting(key: str) -> str | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("SELECT value FROM settings WHERE key = ?", (key,))
    row = cur.fetchone()
    conn.close()
    return row[0] if row else None


def set_setting(key: str, value: str) -> None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        INSERT INTO settings (key, value)
        VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
    """, (key, value))
    conn.commit()
    conn.close()


def get_license_status(*, now: datetime | None = None) -> dict:
    marker = now or _utcnow()
    raw = get_setting(LICENSE_EXPIRY_KEY)
    expiry = _parse_timestamp(raw)
    if expiry is None:
        return {"is_valid": False, "days_left": 0, "expiry": raw}

    days_left = math.ceil((expiry - marker).total_seconds() / 86400)
    return {
        "is_valid": marker < expiry,
        "days_left": max(0, days_left),
        "expiry": raw,
    }


# -----------------------------
# Lessons
# -----------------------------
def _get_active_lesson_row(cur: sqlite3.Cursor, now: datetime):
    """
    (id, start_time, duration, otp_enabled) of the newest lesson, or None
    when there is none or it started more than ACTIVE_LESSON_HOURS ago.
    """
    cur.execute("""
        SELECT id, start_time, duration, otp_enabled
        FROM lessons
        ORDER BY id DESC
        LIMIT 1
    """)
    row = cur.fetchone()
    if not row:
        return None
    started = _parse_timestamp(row[1])
    if started is None or now - started > timedelta(hours=ACTIVE_LESSON_HOURS):
        return None
    return row


def _issue_student_otps(cur: sqlite3.Cursor, lesson_id: int) -> int:
    cur.execute("SELECT id FROM students")
    student_ids = [int(r[0]) for r in cur.fetchall()]
    cur.executemany(
        """
        INSERT INTO attendance (lesson_id, student_id, otp)
        VALUES (?, ?, ?)
        """,
        [(lesson_id, sid, generate_otp()) for sid in student_ids],
    )
    return len(student_ids)


def start_lesson(
    unit_id: int,
    venue: str,
    duration: int | None = None,
    scheduled_start: str | None = None,
    scheduled_end: str | None = None,
    *,
    now: datetime | None = None,
) -> int:
    marker = now or _utcnow()
    minutes = duration if duration and duration > 0 else DEFAULT_DURATION_MINUTES
    start_time = _iso(marker)
    end_time = _iso(marker + timedelta(minutes=minutes))

    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute("""
            INSERT INTO lessons (
                unit_id, date, venue, duration, start_time, end_time,
                scheduled_start, scheduled_end, lecturer_otp
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            unit_id,
            marker.strftime("%Y-%m-%d"),
            venue,
            minutes,
            start_time,
            end_time,
            scheduled_start,
            scheduled_end,
            generate_otp(),
        ))
        lesson_id = int(cur.lastrowid)
        issued = _issue_student_otps(cur, lesson_id)
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    logger.info("Started lesson %s for unit %s with %s students", lesson_id, unit_id, issued)
    return lesson_id


def restart_active_lesson(*, now: datetime | None = None) -> int | None:
    """
    Reopen the active lesson: new start/end times, OTP input disabled again,
    a new lecturer OTP and fresh pending rows for every current student.
    Returns the lesson id, or None when no lesson is active.
    """
    marker = now or _utcnow()
    conn = connect_db()
    cur = conn.cursor()
    try:
        active = _get_active_lesson_row(cur, marker)
        if not active:
            return None

        lesson_id = int(active[0])
        minutes = int(active[2] or DEFAULT_DURATION_MINUTES)
        cur.execute("""
            UPDATE lessons
            SET start_time = ?,
                end_time = ?,
                otp_enabled = 0,
                lecturer_present = 0,
                lecturer_otp = ?
            WHERE id = ?
        """, (
            _iso(marker),
            _iso(marker + timedelta(minutes=minutes)),
            generate_otp(),
            lesson_id,
        ))
        cur.execute("DELETE FROM attendance WHERE lesson_id = ?", (lesson_id,))
        issued = _issue_student_otps(cur, lesson_id)
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    logger.info("Restarted lesson %s with %s students", lesson_id, issued)
    return lesson_id


def enable_lesson_otp(lesson_id: int) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("UPDATE lessons SET otp_enabled = 1 WHERE id = ?", (lesson_id,))
    changed = cur.rowcount > 0
    conn.commit()
    conn.close()
    return changed


def expire_pending_attendance(
    lesson_id: int,
    start_time: str | None,
    *,
    now: datetime | None = None,
    conn: sqlite3.Connection | None = None,
) -> int:
    """Flip pending rows to absent once the OTP window has closed."""
    marker = now or _utcnow()
    if not _otp_window_closed(start_time, marker):
        return 0

    owns_conn = conn is None
    active_conn = conn or connect_db()
    try:
        cur = active_conn.cursor()
        cur.execute("""
            UPDATE attendance
            SET status = 'absent'
            WHERE lesson_id = ? AND status = 'pending'
        """, (lesson_id,))
        expired = cur.rowcount
        if owns_conn:
            active_conn.commit()
    except sqlite3.Error:
        if owns_conn:
            active_conn.rollback()
        raise
    finally:
        if owns_conn:
            active_conn.close()

    if expired > 0:
        logger.info("Auto-expired %s pending attendance records for lesson %s", expired, lesson_id)
    return expired


def get_active_lesson(*, now: datetime | None = None) -> dict | None:
    marker = now or _utcnow()
    conn = connect_db()
    conn.row_factory = sqlite3.Row
    cur = conn.cursor()
    try:
        active = _get_active_lesson_row(cur, marker)
        if not active:
            return None

        lesson_id = int(active["id"])
        expire_pending_attendance(lesson_id, active["start_time"], now=marker, conn=conn)
        conn.commit()

        cur.execute("""
            SELECT l.id, l.unit_id, l.date, l.venue, l.duration,
                   l.start_time, l.end_time, l.scheduled_start, l.scheduled_end,
                   l.lecturer_otp, l.lecturer_present, l.otp_enabled,
                   u.name AS unit_name, u.lecturer
            FROM lessons l
            LEFT JOIN units u ON u.id = l.unit_id
            WHERE l.id = ?
        """, (lesson_id,))
        lesson = dict(cur.fetchone())

        cur.execute("""
            SELECT a.id, a.lesson_id, a.student_id, a.otp, a.status, a.marked_at,
                   s.name AS student_name, s.admission_number
            FROM attendance a
            JOIN students s ON s.id = a.student_id
            WHERE a.lesson_id = ?
            ORDER BY s.name ASC
        """, (lesson_id,))
        attendance = [dict(r) for r in cur.fetchall()]
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    started = _parse_timestamp(lesson["start_time"])
    lesson["lecturer_present"] = bool(lesson["lecturer_present"])
    lesson["otp_enabled"] = bool(lesson["otp_enabled"])
    lesson["otp_expires_at"] = _iso(started + timedelta(minutes=OTP_WINDOW_MINUTES)) if started else None
    lesson["attendance"] = attendance
    return lesson


# -----------------------------
# Attendance marking
# -----------------------------
def _mark_result(
    decision_code: StudentMarkDecision,
    lesson_id: int,
    student_id: int,
    status: AttendanceStatus | None = None,
    marked_at: str | None = None,
) -> StudentMarkResult:
    return {
        "decision_code": decision_code,
        "lesson_id": lesson_id,
        "student_id": student_id,
        "status": status,
        "marked_at": marked_at,
    }


def mark_student_attendance(
    lesson_id: int,
    student_id: int,
    otp: str,
    *,
    now: datetime | None = None,
) -> StudentMarkResult:
    """
    Decision order:
      - lesson must exist and be the active lesson
      - OTP input must be enabled
      - the OTP window must still be open (otherwise this student's pending
        row is marked absent)
      - the code must match the student's row exactly
      - pending -> present happens once; present is never overwritten
    """
    marker = now or _utcnow()
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute("SELECT id, start_time, otp_enabled FROM lessons WHERE id = ?", (lesson_id,))
        lesson = cur.fetchone()
        if not lesson:
            return _mark_result("LESSON_NOT_FOUND", lesson_id, student_id)

        active = _get_active_lesson_row(cur, marker)
        if not active or int(active[0]) != lesson_id:
            return _mark_result("LESSON_NOT_ACTIVE", lesson_id, student_id)

        if not lesson[2]:
            return _mark_result("OTP_DISABLED", lesson_id, student_id)

        if _otp_window_closed(lesson[1], marker):
            cur.execute("""
                UPDATE attendance
                SET status = 'absent'
                WHERE lesson_id = ? AND student_id = ? AND status = 'pending'
            """, (lesson_id, student_id))
            conn.commit()
            cur.execute(
                "SELECT status FROM attendance WHERE lesson_id = ? AND student_id = ?",
                (lesson_id, student_id),
            )
            row = cur.fetchone()
            return _mark_result("OTP_EXPIRED", lesson_id, student_id, row[0] if row else None)

        cur.execute("""
            SELECT id, otp, status, marked_at
            FROM attendance
            WHERE lesson_id = ? AND student_id = ?
        """, (lesson_id, student_id))
        record = cur.fetchone()
        if not record or record[1] != otp:
            return _mark_result("INVALID_OTP", lesson_id, student_id)

        record_id, _, status, marked_at = record
        if status == "present":
            return _mark_result("ALREADY_PRESENT", lesson_id, student_id, "present", marked_at)
        if status == "absent":
            return _mark_result("OTP_EXPIRED", lesson_id, student_id, "absent")

        marked_at = _iso(marker)
        cur.execute("""
            UPDATE attendance
            SET status = 'present', marked_at = ?
            WHERE id = ? AND status = 'pending'
        """, (marked_at, record_id))
        if cur.rowcount == 0:
            # lost a race with a concurrent submission
            conn.rollback()
            return _mark_result("ALREADY_PRESENT", lesson_id, student_id, "present")
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    return _mark_result("PRESENT_SET", lesson_id, student_id, "present", marked_at)


def mark_lecturer_attendance(lesson_id: int, otp: str) -> LecturerMarkDecision:
    conn = connect_db()
    cur = conn.cursor()
    try:
        cur.execute("SELECT lecturer_otp, lecturer_present FROM lessons WHERE id = ?", (lesson_id,))
        lesson = cur.fetchone()
        if not lesson:
            return "LESSON_NOT_FOUND"
        if lesson[0] != otp:
            return "INVALID_OTP"
        if lesson[1]:
            return "ALREADY_PRESENT"

        cur.execute("""
            UPDATE lessons
            SET lecturer_present = 1
            WHERE id = ? AND lecturer_present = 0
        """, (lesson_id,))
        if cur.rowcount == 0:
            conn.rollback()
            return "ALREADY_PRESENT"
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()

    return "LECTURER_PRESENT_SET"
