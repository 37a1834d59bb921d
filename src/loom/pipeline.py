"""One interactive turn: context, completion, extraction, review and commit."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from .assembler import PromptAssembler, PromptPackage
from .changes.applier import ApplyReport, ChangeApplier, StagedChange, sweep_temp_files
from .changes.extractor import ChangeExtractor
from .changes.recovery import RecoveryResolver
from .config import LoomConfig
from .context.scanner import RepositoryScanner
from .errors import EmbeddingError, RecoveryError, ScanError
from .memory.embeddings import content_digest, threshold_for_model
from .models.provider import ChatProvider, ProviderError, ProviderResponseError, retry_with_backoff
from .session import SessionContext
from .structured import CodeChange, FileRecord

LOGGER = logging.getLogger(__name__)

__all__ = ["Pipeline", "TurnPresenter", "TurnResult"]


class TurnPresenter(Protocol):
    """User-facing collaborator: shows streamed text and reviews each change."""

    def on_delta(self, text: str) -> None:
        ...

    def on_restart(self) -> None:
        """Called before a retried stream replays the response from the start."""
        ...

    def review(self, change: StagedChange, diff: str) -> bool:
        ...


@dataclass(slots=True)
class TurnResult:
    """Everything that happened during one call to :meth:`Pipeline.run_turn`."""

    response: str
    changes: List[CodeChange] = field(default_factory=list)
    report: ApplyReport = field(default_factory=ApplyReport)
    recovery_rounds: int = 0
    rescanned: bool = False
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)


class Pipeline:
    """Sequences the context and change components for each user turn."""

    def __init__(
        self,
        config: LoomConfig,
        provider: ChatProvider,
        *,
        session: Optional[SessionContext] = None,
        scanner: Optional[RepositoryScanner] = None,
        retry_base_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.root = config.root
        self.provider = provider
        self.session = session or SessionContext()
        self.scanner = scanner or RepositoryScanner(self.root, ignore_file=config.context.ignore_file)
        self.assembler = PromptAssembler(self.root, token_budget=config.context.token_budget)
        self.extractor = ChangeExtractor()
        self.resolver = RecoveryResolver(self.root)
        self.applier = ChangeApplier(self.root)
        self._retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._records: Optional[List[FileRecord]] = None

    @property
    def records(self) -> List[FileRecord]:
        if self._records is None:
            self.refresh()
        return list(self._records or [])

    def refresh(self) -> List[FileRecord]:
        """Re-scan the project; a failure leaves no records so the next turn retries."""
        self._records = None
        self._records = self.scanner.scan()
        return list(self._records)

    def run_turn(
        self,
        user_input: str,
        presenter: TurnPresenter,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> TurnResult:
        """Run one turn end to end.

        Raises :class:`ScanError`, :class:`EmbeddingError` and provider errors,
        all of which abort the turn before any file is touched.
        """
        sweep_temp_files(self.root)
        records = self.records
        contexts = self._select_context(records, user_input)

        requested_context = ""
        rounds = 0
        errors: List[str] = []
        while True:
            package = self.assembler.build(contexts, self.session.history, user_input, requested_context)
            response = self._complete(package, presenter, cancel)
            self.session.add_history(user_input, response)
            changes = self.extractor.extract(response)
            if changes or rounds >= self.config.context.max_recovery_rounds:
                break
            try:
                follow_up = self.resolver.resolve(response)
            except RecoveryError as error:
                LOGGER.warning("Could not resolve requested files: %s", error)
                errors.append(str(error))
                break
            if not follow_up:
                break
            requested_context = follow_up
            rounds += 1

        result = TurnResult(
            response=response,
            changes=changes,
            recovery_rounds=rounds,
            errors=errors,
            metadata=dict(package.metadata),
        )
        if not changes:
            return result

        result.report = self.applier.process(changes, presenter)
        result.errors.extend(str(error) for error in result.report.failed)
        if result.report.any_committed:
            try:
                self.refresh()
                result.rescanned = True
            except ScanError as error:
                LOGGER.error("Re-scan after commit failed: %s", error)
                result.errors.append(str(error))
        return result

    def shutdown(self) -> None:
        sweep_temp_files(self.root)
        self.session.clear()

    def _complete(
        self,
        package: PromptPackage,
        presenter: TurnPresenter,
        cancel: Optional[threading.Event],
    ) -> str:
        """Drain one completion stream through its terminal event, with retries."""
        attempts = 0

        def attempt() -> str:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                presenter.on_restart()
            buffer: List[str] = []
            events = self.provider.chat_completion(package.user_prompt, package.system_prompt, cancel=cancel)
            for event in events:
                if event.error is not None:
                    raise event.error
                if event.done:
                    return "".join(buffer)
                buffer.append(event.content_delta)
                presenter.on_delta(event.content_delta)
            raise ProviderResponseError("Completion stream ended without a terminal event.")

        return self._retry(attempt, "chat completion")

    def _select_context(self, records: List[FileRecord], user_input: str) -> List[str]:
        if not self.config.context.rag:
            return [record.compressed_content for record in records]

        self._embed_records(records)
        try:
            query_vectors = self._retry(lambda: self.provider.embed([user_input]), "query embedding")
        except ProviderError as error:
            raise EmbeddingError(f"failed to embed the request: {error}") from error
        if not query_vectors or not query_vectors[0]:
            raise EmbeddingError("Provider returned an empty embedding for the request.")

        threshold = self.config.context.threshold or threshold_for_model(self.provider.embedding_model)
        chunks = self.session.embeddings.find_relevant_chunks(
            query_vectors[0], self.config.context.top_n, threshold
        )
        LOGGER.info("Selected %d of %d files by similarity (threshold %.2f)", len(chunks), len(records), threshold)
        return chunks

    def _embed_records(self, records: List[FileRecord]) -> None:
        """Embed every changed file concurrently; any failure aborts the round."""
        store = self.session.embeddings
        store.prune(record.relative_path for record in records)
        pending = [
            record
            for record in records
            if not store.is_current(record.relative_path, content_digest(record.raw_content))
        ]
        if not pending:
            return

        with ThreadPoolExecutor(max_workers=self.config.context.embedding_workers) as executor:
            futures = {executor.submit(self._embed_one, record): record for record in pending}
            wait(futures)

        failures: Dict[str, str] = {}
        for future, record in futures.items():
            error = future.exception()
            if error is not None:
                failures[record.relative_path] = str(error)
        if failures:
            raise EmbeddingError(
                f"failed to embed {len(failures)} of {len(pending)} file(s)",
                details={"failures": failures},
            )

    def _embed_one(self, record: FileRecord) -> None:
        vectors = self._retry(lambda: self.provider.embed([record.compressed_content]), f"embedding {record.relative_path}")
        saved = self.session.embeddings.save(
            record.relative_path,
            record.raw_content,
            vectors[0] if vectors else [],
            digest=content_digest(record.raw_content),
        )
        if not saved:
            raise EmbeddingError(f"Provider returned an unusable embedding for {record.relative_path}.")

    def _retry(self, operation: Callable[[], Any], description: str) -> Any:
        return retry_with_backoff(
            operation,
            max_attempts=self.config.provider.max_attempts,
            base_delay=self._retry_base_delay,
            sleep=self._sleep,
            description=description,
        )
