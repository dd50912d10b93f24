"""
JSON-file document store.

Every collection path (``courses``, ``pricing/<courseId>/priceRules``, ...) is
one JSON file mapping document ids to documents, laid out on disk the same way
the path reads::

    <data_dir>/courses.json
    <data_dir>/pricing/solmar-golf-links/priceRules.json
"""

import copy
import fcntl
import json
import logging
import os
import re
import threading
from contextlib import contextmanager

from .errors import UpstreamReadError, ValidationError

logger = logging.getLogger(__name__)

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


# =============================================================================
# ATOMIC FILE I/O
# =============================================================================
def atomic_write_json(filepath, data):
    os.makedirs(os.path.dirname(filepath), exist_ok=True)
    tmp = filepath + '.tmp'
    with open(tmp, 'w') as f:
        fcntl.flock(f, fcntl.LOCK_EX)
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, filepath)


def read_json(filepath, default=None):
    """Read a JSON file, returning ``default`` when it does not exist.

    Unlike a missing file, an unreadable or corrupt one is an upstream
    failure and raises :class:`UpstreamReadError`.
    """
    if not os.path.exists(filepath):
        return default if default is not None else {}
    try:
        with open(filepath) as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        raise UpstreamReadError(f"Failed to read {filepath}: {e}") from e


def validate_segment(value, name="id"):
    """Reject ids that are empty or could escape the data directory."""
    if not isinstance(value, str) or not _SEGMENT_RE.match(value) or value in (".", ".."):
        raise ValidationError(f"Invalid {name}")
    return value


# =============================================================================
# DOCUMENT STORE
# =============================================================================
class DocumentStore:
    def __init__(self, data_dir):
        self.data_dir = data_dir
        self._lock = threading.RLock()

    def _collection_file(self, path):
        parts = [p for p in path.strip("/").split("/") if p]
        if not parts or len(parts) % 2 == 0:
            raise ValidationError(f"Not a collection path: {path}")
        for part in parts:
            validate_segment(part, "path segment")
        return os.path.join(self.data_dir, *parts) + ".json"

    def _read_collection(self, path):
        docs = read_json(self._collection_file(path), {})
        if not isinstance(docs, dict):
            raise UpstreamReadError(f"Collection {path} is not a document map")
        return docs

    def _write_collection(self, path, docs):
        atomic_write_json(self._collection_file(path), docs)

    def get(self, path, doc_id):
        """Return a copy of the document (with ``id``) or None."""
        validate_segment(doc_id)
        doc = self._read_collection(path).get(doc_id)
        if doc is None:
            return None
        return {**copy.deepcopy(doc), "id": doc_id}

    def list(self, path):
        docs = self._read_collection(path)
        return [{**copy.deepcopy(doc), "id": doc_id} for doc_id, doc in docs.items()]

    def set(self, path, doc_id, data, merge=False):
        with self.batch() as batch:
            batch.set(path, doc_id, data, merge=merge)
        return self.get(path, doc_id)

    def delete(self, path, doc_id):
        validate_segment(doc_id)
        with self._lock:
            docs = self._read_collection(path)
            if doc_id not in docs:
                return False
            del docs[doc_id]
            self._write_collection(path, docs)
            return True

    def count(self, path):
        return len(self._read_collection(path))

    @contextmanager
    def batch(self):
        """Queue writes and apply them together when the block exits cleanly."""
        batch = WriteBatch()
        yield batch
        with self._lock:
            self._commit(batch)

    def _commit(self, batch):
        """Apply a batch to every collection it touches, or to none.

        All collections are read and updated in memory before the first file
        is written. A write failure restores the files already replaced.
        """
        by_path = {}
        for op in batch.operations:
            by_path.setdefault(op[1], []).append(op)

        originals = {path: self._read_collection(path) for path in by_path}
        updated = {}
        for path, ops in by_path.items():
            docs = copy.deepcopy(originals[path])
            for kind, _, doc_id, data, merge in ops:
                if kind == "delete":
                    docs.pop(doc_id, None)
                elif merge and isinstance(docs.get(doc_id), dict):
                    docs[doc_id] = {**docs[doc_id], **data}
                else:
                    docs[doc_id] = data
            updated[path] = docs

        written = []
        try:
            for path, docs in updated.items():
                self._write_collection(path, docs)
                written.append(path)
        except OSError:
            logger.error("Batch write failed, restoring %d collection(s)", len(written))
            for path in written:
                self._write_collection(path, originals[path])
            raise


class WriteBatch:
    def __init__(self):
        self.operations = []

    def set(self, path, doc_id, data, merge=False):
        validate_segment(doc_id)
        data = {k: copy.deepcopy(v) for k, v in data.items() if k != "id"}
        self.operations.append(("set", path, doc_id, data, merge))

    def delete(self, path, doc_id):
        validate_segment(doc_id)
        self.operations.append(("delete", path, doc_id, None, False))

    def __len__(self):
        return len(self.operations)


# =============================================================================
# COURSE DATABASE
# =============================================================================
def seed_courses(store):
    """Write the built-in course catalogue when the collection is empty."""
    if store.count("courses"):
        return 0
    courses = get_seed_courses()
    with store.batch() as batch:
        for course in courses:
            batch.set("courses", course["id"], course)
    logger.info("Seeded %d courses into %s", len(courses), store.data_dir)
    return len(courses)


def get_seed_courses():
    """
    Seed catalogue of Baja California Sur courses bookable through TeeReserve.

    basePrice is the flat per-player green fee used when a course has no
    pricing configured yet.
    """
    def course(id, name, location, base_price, opening, closing, interval=10):
        return {
            "id": id,
            "name": name,
            "location": location,
            "basePrice": base_price,
            "currency": "USD",
            "teeTimeInterval": interval,
            "operatingHours": {"openingTime": opening, "closingTime": closing},
            "platform": "mock",
        }

    return [
        # =====================================================================
        # SAN JOSÉ DEL CABO
        # =====================================================================
        course("puerto-los-cabos",        "Puerto Los Cabos Golf Club",       "San José del Cabo", 180, "06:00", "19:00"),
        course("vidanta-golf-los-cabos",  "Vidanta Golf Los Cabos",           "San José del Cabo", 220, "08:00", "17:00"),
        course("club-campestre-san-jose", "Club Campestre San José",          "San José del Cabo", 100, "07:30", "17:30"),
        course("palmilla-golf-club",      "Palmilla Golf Club",               "San José del Cabo", 280, "07:00", "17:00"),

        # =====================================================================
        # CABO SAN LUCAS / CORRIDOR
        # =====================================================================
        course("cabo-real-golf-club",         "Cabo Real Golf Club",                "Cabo San Lucas", 190, "07:00", "18:00"),
        course("cabo-san-lucas-country-club", "Cabo San Lucas Country Club",        "Cabo San Lucas", 120, "06:30", "18:30"),
        course("diamante-golf",               "Diamante Golf (Dunes / Cardonal)",   "Cabo San Lucas", 300, "06:00", "19:00"),
        course("solmar-golf-links",           "Solmar Golf Links",                  "Cabo San Lucas", 305, "07:00", "18:00"),
        course("quivira-golf-club",           "Quivira Golf Club",                  "Cabo San Lucas", 350, "07:00", "17:00"),

        # =====================================================================
        # LA PAZ / LORETO
        # =====================================================================
        course("el-cortes-golf-club",  "El Cortés Golf Club",  "La Paz", 80,  "07:00", "18:00"),
        course("paraiso-del-mar-golf", "Paraíso del Mar Golf", "La Paz", 90,  "07:00", "18:00"),
        course("tpc-danzante-bay",     "TPC Danzante Bay",     "Loreto", 150, "07:00", "17:00"),
    ]
