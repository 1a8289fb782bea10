"""
Translation job handlers and processing logic
"""
import asyncio
import dataclasses
import logging
import os
import shutil
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from doctranslate.config import TranslationSettings
from doctranslate.core.documents import (
    GenerateMode,
    PdfDocument,
    TextBlock,
    TranslatableDocument,
    check_output_integrity,
    open_document,
    output_filename,
    resolve_output_format,
)
from doctranslate.core.exceptions import ExtractionError, TranslationError
from doctranslate.core.llm import ProviderConfig, create_llm_provider
from doctranslate.core.retry_manager import RetryManager
from doctranslate.core.translation_cache import TranslationCache
from doctranslate.core.translation_client import TranslationClient
from doctranslate.utils.task_logger import attached_task_logger
from .session_store import session_digest
from .task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class TranslationJob:
    """Everything a worker needs to run one task; built by the submit route"""
    source_path: str
    source_file: str
    target_language: str
    provider_config: ProviderConfig
    generate_mode: GenerateMode = GenerateMode.BILINGUAL
    user_prompt: Optional[str] = None
    force_retranslate: bool = False
    output_format: str = ''
    output_dir: Optional[str] = None
    cache_scope: Optional[str] = None


def run_translation_async_wrapper(orchestrator, task_id: str, job: TranslationJob):
    """
    Thread target: run one task on a fresh event loop

    Args:
        orchestrator: TranslationOrchestrator driving the task
        task_id: Task identifier
        job: Task inputs
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        loop.run_until_complete(orchestrator.run_task(task_id, job))
    except Exception as e:
        error_msg = f"Uncaught error in translation worker: {e}"
        logger.error(f"Task {task_id}: {error_msg}", exc_info=True)
        orchestrator.task_store.mark_failed(task_id, error_msg)
    finally:
        loop.close()
        orchestrator.release_worker(task_id)


class TranslationOrchestrator:
    """
    Creates tasks and drives each one on its own daemon thread.

    The orchestrator is the only writer of task state; request handlers only
    read snapshots through the TaskStore.
    """

    def __init__(self, task_store: TaskStore, cache: TranslationCache,
                 settings: Optional[TranslationSettings] = None,
                 provider_factory: Callable[..., Any] = create_llm_provider,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 sleep: Callable[[float], Any] = asyncio.sleep):
        """
        Args:
            task_store: Shared task state
            cache: Shared translation cache
            settings: Runtime settings (module defaults when omitted)
            provider_factory: Builds a provider from a ProviderConfig
            transport: Optional httpx transport handed to every provider
            sleep: Awaitable sleep used for inter-call and retry delays
        """
        self.task_store = task_store
        self.cache = cache
        self.settings = settings or TranslationSettings()
        self.provider_factory = provider_factory
        self.transport = transport
        self._sleep = sleep
        self._threads: Dict[str, threading.Thread] = {}
        self._threads_lock = threading.Lock()

    def submit(self, session_id: str, job: TranslationJob, task_id: Optional[str] = None) -> str:
        """
        Create a pending task owned by ``session_id`` and start its worker.

        Returns:
            The task id, immediately; the work continues in the background
        """
        task = self.task_store.create(
            session_id, job.source_file, job.target_language,
            generate_mode=job.generate_mode.value, task_id=task_id,
        )
        digest = session_digest(session_id)
        job = dataclasses.replace(
            job,
            output_dir=job.output_dir or os.path.join(self.settings.output_dir, digest, task.task_id),
            cache_scope=digest,
        )

        thread = threading.Thread(
            target=run_translation_async_wrapper,
            args=(self, task.task_id, job),
            name=f"task-{task.task_id[:8]}",
            daemon=True,
        )
        with self._threads_lock:
            self._threads[task.task_id] = thread
        thread.start()
        logger.info(f"Task {task.task_id} queued: {job.source_file} -> {job.target_language}")
        return task.task_id

    def wait(self, task_id: str, timeout: Optional[float] = None) -> bool:
        """Join the worker of ``task_id``; True once it has finished"""
        with self._threads_lock:
            thread = self._threads.get(task_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def release_worker(self, task_id: str):
        """Called by the worker thread as its last step"""
        with self._threads_lock:
            self._threads.pop(task_id, None)

    def active_workers(self) -> int:
        with self._threads_lock:
            return len(self._threads)

    def forget_session(self, session_id: str):
        """
        Drop everything a departed visitor left behind: tasks, cached
        translations, uploads and outputs.

        Registered as a SessionStore removal listener. Workers still running
        for the session finish normally; their results go nowhere.
        """
        removed = self.task_store.purge_session(session_id)
        digest = session_digest(session_id)
        self.cache.purge_scope(digest)
        for root in (self.settings.upload_dir, self.settings.output_dir):
            directory = os.path.join(root, digest)
            if not os.path.isdir(directory):
                continue
            try:
                shutil.rmtree(directory)
            except OSError as e:
                logger.warning(f"Could not remove session files in {directory}: {e}")
        logger.info(f"Forgot session {digest[:8]}: {removed} task(s) purged")

    def _build_client(self, job: TranslationJob) -> TranslationClient:
        logger.debug(f"Provider settings: {job.provider_config.to_dict()}")
        provider = self.provider_factory(
            job.provider_config,
            target_language=job.target_language,
            transport=self.transport,
            timeout=self.settings.request_timeout,
        )
        retry_manager = RetryManager(
            max_attempts=self.settings.max_attempts,
            initial_delay=self.settings.retry_delay,
            sleep=self._sleep,
        )
        if job.cache_scope is None:
            raise ValueError("job has no cache scope; submit it through TranslationOrchestrator.submit")
        return TranslationClient(provider, self.cache.for_scope(job.cache_scope), retry_manager,
                                 force_retranslate=job.force_retranslate)

    async def _translate_blocks(self, task_id: str, job: TranslationJob, client: TranslationClient,
                                blocks: List[TextBlock]) -> Tuple[Dict[str, str], int]:
        """Translate blocks one after another; failed blocks keep their source text"""
        translations: Dict[str, str] = {}
        failed = 0
        total = len(blocks)

        for i, block in enumerate(blocks):
            calls_before = client.provider_calls
            try:
                translations[block.block_id] = await client.translate(
                    block.text, job.target_language, job.user_prompt)
            except TranslationError as e:
                failed += 1
                logger.warning(f"Block {i + 1}/{total} kept in original language: {e.message}")

            self.task_store.update_progress(task_id, (i + 1) / total)
            if client.provider_calls > calls_before and i + 1 < total and self.settings.inter_call_delay > 0:
                await self._sleep(self.settings.inter_call_delay)

        return translations, failed

    def _rebuild_format(self, document: TranslatableDocument, job: TranslationJob) -> Tuple[str, bool]:
        if not isinstance(document, PdfDocument):
            return document.format_name, bool(job.output_format) and \
                job.output_format.lstrip('.').lower() != document.format_name
        if not job.output_format:
            return 'pdf', False
        return resolve_output_format(job.output_format)

    async def run_task(self, task_id: str, job: TranslationJob):
        """
        Drive one task: extract, translate, rebuild, save, verify.

        Every outcome ends in mark_completed or mark_failed; per-block
        provider failures only reduce what gets translated.
        """
        with attached_task_logger(self.task_store, task_id):
            self.task_store.mark_processing(task_id)
            logger.info(f"Translating {job.source_file} into {job.target_language} ({job.generate_mode.value})")

            document: Optional[TranslatableDocument] = None
            client: Optional[TranslationClient] = None
            try:
                document = open_document(job.source_path, target_language=job.target_language)
                blocks = document.extract_blocks()
                if not blocks:
                    raise ExtractionError("no translatable text", {'file': job.source_file})
                logger.info(f"Extracted {len(blocks)} text block(s)")

                client = self._build_client(job)
                translations, failed = await self._translate_blocks(task_id, job, client, blocks)
                document.apply_translations(translations)

                output_format, defaulted = self._rebuild_format(document, job)
                if defaulted:
                    logger.warning(f"Output format '{job.output_format}' not supported, writing {output_format}")
                document.rebuild(job.generate_mode, output_format)
                output_path = os.path.join(
                    job.output_dir, output_filename(job.source_file, job.generate_mode, output_format))
                result = document.save(output_path)

                warnings: List[str] = []
                if failed:
                    warnings.append(f"{failed} of {len(blocks)} block(s) kept their original text")
                if defaulted:
                    warnings.append(f"output format '{job.output_format}' not supported, wrote {output_format}")
                if result.degraded:
                    logger.warning("Output was produced by the full-rebuild fallback; layout is not preserved")
                    warnings.append("degraded output: original layout could not be preserved")

                integrity = self._check_integrity(result.output_path, document.blocks, job.generate_mode)
                if integrity is not None and not integrity['passed']:
                    warnings.append("integrity check failed: output may be missing translated text")

                metadata = {
                    'degraded': result.degraded,
                    'rebuild_strategy': result.strategy,
                    'output_format': result.output_format,
                    'output_format_defaulted': defaulted,
                    'integrity': integrity,
                    'warnings': warnings,
                    'notes': result.notes,
                    'blocks_total': len(blocks),
                    'blocks_failed': failed,
                    'cache_hits': client.cache_hits,
                    'provider_calls': client.provider_calls,
                }
                if isinstance(document, PdfDocument) and document.unparsed_pages:
                    metadata['unparsed_pages'] = list(document.unparsed_pages)

                self.task_store.mark_completed(task_id, result.output_path, metadata)
                logger.info(f"Task completed: {len(blocks) - failed}/{len(blocks)} block(s) translated, "
                            f"{client.provider_calls} provider call(s), {client.cache_hits} cache hit(s)")

            except TranslationError as e:
                logger.error(f"Task failed: {e}")
                self.task_store.mark_failed(task_id, e.message)
            except Exception as e:
                logger.error(f"Critical error during task {task_id}: {e}", exc_info=True)
                self.task_store.mark_failed(task_id, f"Unexpected error: {e}")
            finally:
                if document is not None:
                    document.close()
                if client is not None:
                    await client.close()

    def _check_integrity(self, output_path: str, blocks: List[TextBlock],
                         mode: GenerateMode) -> Optional[Dict[str, Any]]:
        try:
            report = check_output_integrity(output_path, blocks, mode, self.settings.integrity_threshold)
        except Exception as e:
            logger.warning(f"Integrity check could not read the output: {e}")
            return None
        return report.to_dict()
