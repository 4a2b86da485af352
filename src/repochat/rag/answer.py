"""Answer streamer: resolve context, stream the completion, persist the transcript.

Per question:
  1. Usage check (chat) when a user id is given.
  2. User message persisted.
  3. Context resolved → system prompt built.
  4. Completion opened and the first delta pulled. A provider failure here is
     raised as GenerationProviderError and nothing else is persisted.
  5. The returned AnswerStream forwards deltas as they arrive. A provider
     failure mid-stream ends the stream and sets ``interrupted``.
  6. When the stream ends, however it ends, one assistant message holding the
     forwarded text and the source paths is persisted.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Iterator, Sequence

from repochat.config import RepochatConfig
from repochat.db.models import ChatMessage
from repochat.db.repository import Repository
from repochat.errors import GenerationProviderError, ProjectNotFound
from repochat.ingest.batcher import Embedder
from repochat.rag import llm_client
from repochat.rag.context import ContextResolver
from repochat.rag.prompt import build_system_prompt
from repochat.usage import ActionKind, UsageLedger

logger = logging.getLogger(__name__)

# (system_prompt, user_message) -> text deltas
Completer = Callable[[str, str], Iterator[str]]

_END = object()


class AnswerStream:
    """Iterable of answer text deltas with the provenance list attached.

    Iterate it once. ``close()`` ends the stream early; the partial answer is
    still persisted.

    The assistant message is written when iteration ends or the stream is
    closed. A stream that is neither iterated nor closed persists nothing, so
    callers should use it as a context manager::

        with streamer.answer(project_id, question) as stream:
            for delta in stream:
                ...
    """

    def __init__(
        self,
        first: object,
        rest: Iterator[str],
        sources: list[str],
        on_finish: Callable[[str, list[str], bool], None],
    ) -> None:
        self.sources = sources
        self.interrupted = False
        self._first = first
        self._rest = rest
        self._on_finish = on_finish
        self._forwarded: list[str] = []
        self._finished = False
        self._gen = self._generate()

    @property
    def text(self) -> str:
        """Everything forwarded so far."""
        return "".join(self._forwarded)

    def __iter__(self) -> Iterator[str]:
        return self._gen

    def close(self) -> None:
        self._gen.close()
        self._finish()

    def __enter__(self) -> AnswerStream:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _generate(self) -> Iterator[str]:
        try:
            if self._first is _END:
                return
            self._forwarded.append(self._first)  # type: ignore[arg-type]
            yield self._first  # type: ignore[misc]
            try:
                for delta in self._rest:
                    self._forwarded.append(delta)
                    yield delta
            except Exception as exc:
                self.interrupted = True
                logger.error("Generation interrupted after %d deltas: %s", len(self._forwarded), exc)
        finally:
            self._finish()

    def _finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._on_finish(self.text, self.sources, self.interrupted)


class AnswerStreamer:
    """Answer questions about one indexed project.

    Args:
        repo: Open Repository instance (used from the caller's thread only).
        config: Loaded configuration.
        embedder: ``text -> vector`` for the question; defaults to the
            configured embedding model.
        completer: ``(system_prompt, user_message) -> deltas``; defaults to a
            LiteLLM streaming completion with the configured generation model.
        ledger: Usage ledger; when omitted one is built from ``config.limits``.
    """

    def __init__(
        self,
        repo: Repository,
        config: RepochatConfig,
        *,
        embedder: Embedder | None = None,
        completer: Completer | None = None,
        ledger: UsageLedger | None = None,
    ) -> None:
        self._repo = repo
        self._config = config
        self._embedder = embedder or functools.partial(
            llm_client.embed,
            config.embedding.model,
            timeout=config.embedding.request_timeout,
        )
        gen = config.generation
        self._completer = completer or functools.partial(
            llm_client.stream_complete,
            gen.model,
            max_tokens=gen.max_tokens,
            temperature=gen.temperature,
            timeout=gen.request_timeout,
        )
        self._ledger = ledger or UsageLedger(repo, config.limits)
        self._resolver = ContextResolver(repo, config, self._embedder)

    def answer(
        self,
        project_id: str,
        question: str,
        selected_paths: Sequence[str] | None = None,
        user_id: str | None = None,
    ) -> AnswerStream:
        """Start answering *question*; returns once the first delta is available.

        Raises:
            ProjectNotFound: If the project does not exist (or is not owned by
                *user_id* when one is given).
            UsageLimitExceeded: If *user_id* is over the daily chat limit.
            GenerationProviderError: If the completion fails before the first delta.
        """
        project = (
            self._repo.get_project_for_user(project_id, user_id)
            if user_id is not None
            else self._repo.get_project(project_id)
        )
        if project is None:
            raise ProjectNotFound(project_id)

        if user_id is not None:
            self._ledger.check_and_reserve(user_id, ActionKind.CHAT)

        self._repo.add_message(ChatMessage(project_id=project_id, role="user", content=question))

        context = self._resolver.resolve(project_id, question, selected_paths)
        system_prompt = build_system_prompt(context.tree, context.fragments)

        try:
            deltas = iter(self._completer(system_prompt, question))
            first = next(deltas, _END)
        except Exception as exc:
            logger.error("Generation failed for project %s: %s", project_id, exc)
            raise GenerationProviderError(f"Failed to generate answer: {exc}") from exc

        on_finish = functools.partial(self._persist_answer, project_id, user_id)
        return AnswerStream(first, deltas, context.sources, on_finish)

    def _persist_answer(
        self,
        project_id: str,
        user_id: str | None,
        text: str,
        sources: list[str],
        interrupted: bool,
    ) -> None:
        self._repo.add_message(
            ChatMessage(project_id=project_id, role="assistant", content=text, sources=sources)
        )
        if user_id is not None:
            self._ledger.increment(user_id, ActionKind.CHAT)
        logger.info(
            "Answered in project %s (%d chars, %d sources%s)",
            project_id,
            len(text),
            len(sources),
            ", interrupted" if interrupted else "",
        )
