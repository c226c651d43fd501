import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Iterator, List, Optional

from .. import config
from ..exceptions import DecodeError, FileHashError, ScanCancelled
from ..fingerprint.content import content_hash
from ..fingerprint.video import is_video, perceptual_hash
from ..models import (
    PERCEPTUAL_FAILED, PERCEPTUAL_OK,
    FingerprintEntry, WorkItem, WorkResult,
)

# Queue markers
_STOP = object()
_DONE = object()

_POLL_INTERVAL = 0.1


class WorkerPool:
    """
    Fixed pool of fingerprinting threads fed through a bounded work queue.

    run() is driven by the consumer: one producer thread pushes work items
    (blocking while the work queue is full), `threads` workers hash them and
    push results onto a bounded result queue, and the caller iterates the
    results from its own thread. A failing file becomes a failed WorkResult;
    it never stops the other workers.
    """

    def __init__(self,
                 threads: int = config.DEFAULT_THREADS,
                 videohash: bool = False,
                 sample_interval: float = config.SAMPLE_INTERVAL,
                 max_sample_frames: int = config.MAX_SAMPLE_FRAMES,
                 queue_size: Optional[int] = None):
        self.threads = threads
        self.videohash = videohash
        self.sample_interval = sample_interval
        self.max_sample_frames = max_sample_frames
        self.queue_size = queue_size or threads * config.QUEUE_FACTOR
        self.cancel_event = threading.Event()

    def cancel(self):
        self.cancel_event.set()

    def process(self, item: WorkItem) -> WorkResult:
        """Fingerprints a single file."""
        path = item.record.path
        try:
            digest = item.known_digest or content_hash(path)
        except FileHashError as e:
            logging.warning(f"Failed to hash {path}: {e}")
            return WorkResult(item, error=str(e))

        perceptual = None
        status = None
        decode_error = None
        if self.videohash and is_video(path):
            try:
                perceptual = perceptual_hash(path, self.sample_interval, self.max_sample_frames)
                status = PERCEPTUAL_OK
            except DecodeError as e:
                # Content hash only from now on
                logging.warning(f"Cannot decode {path}: {e}")
                status = PERCEPTUAL_FAILED
                decode_error = str(e)

        entry = FingerprintEntry(
            record=item.record,
            digest=digest,
            generation=item.generation,
            perceptual=perceptual,
            perceptual_status=status,
        )
        return WorkResult(item, entry=entry, decode_error=decode_error)

    def run(self, items: Iterable[WorkItem]) -> Iterator[WorkResult]:
        work_q: queue.Queue = queue.Queue(maxsize=self.queue_size)
        result_q: queue.Queue = queue.Queue(maxsize=self.queue_size)
        producer_errors: List[BaseException] = []

        producer = threading.Thread(
            target=self._produce, args=(items, work_q, producer_errors), name="scan-coordinator", daemon=True
        )
        finished = False
        with ThreadPoolExecutor(max_workers=self.threads, thread_name_prefix="hasher") as executor:
            for _ in range(self.threads):
                executor.submit(self._work, work_q, result_q)
            producer.start()
            try:
                done = 0
                while done < self.threads:
                    result = self._get(result_q)
                    if result is _DONE:
                        done += 1
                        continue
                    yield result
                finished = True
            finally:
                if not finished:
                    # Abandon in-flight work, let blocked threads see the flag
                    self.cancel_event.set()
                producer.join()

        if producer_errors:
            raise producer_errors[0]

    # --- Threads ---

    def _produce(self, items: Iterable[WorkItem], work_q: queue.Queue, errors: List[BaseException]):
        try:
            for item in items:
                if not self._put(work_q, item):
                    return
        except BaseException as e:
            logging.error(f"Scan coordinator failed: {e}")
            errors.append(e)
        finally:
            for _ in range(self.threads):
                if not self._put(work_q, _STOP):
                    break

    def _work(self, work_q: queue.Queue, result_q: queue.Queue):
        while True:
            try:
                item = self._get(work_q)
            except ScanCancelled:
                return
            if item is _STOP:
                self._put(result_q, _DONE)
                return
            try:
                result = self.process(item)
            except Exception as e:
                logging.error(f"Failed to process {item.record.path}: {e}")
                result = WorkResult(item, error=str(e))
            if not self._put(result_q, result):
                return

    # --- Cancellable queue access ---

    def _put(self, q: queue.Queue, item) -> bool:
        while not self.cancel_event.is_set():
            try:
                q.put(item, timeout=_POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def _get(self, q: queue.Queue):
        while not self.cancel_event.is_set():
            try:
                return q.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
        raise ScanCancelled("Scan cancelled")
