"""Debounced address suggestion pipeline.

Keystrokes go in through `on_input`; after a quiet period the latest value is
sent to the geocoding provider. Every dispatched request carries a token and a
response is only published when its token is still the latest one issued, so
late responses from superseded queries never overwrite newer results.

All methods must be called from the event loop that owns the pipeline.
"""
import asyncio
import logging
from typing import Callable

from app.schemas import AddressForm, Candidate, PipelineConfig, PipelineState
from app.services.form_binding import apply_candidate
from app.services.geocoding import GeocodingError, GeocodingProvider

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Address suggestions are unavailable right now."

CandidatesListener = Callable[[list[Candidate], bool], None]
ErrorListener = Callable[[str], None]


class UnknownCandidateError(LookupError):
    """Raised when selecting a provider id that is not currently displayed."""


class SuggestionPipeline:
    def __init__(
        self,
        provider: GeocodingProvider,
        config: PipelineConfig | None = None,
        form: AddressForm | None = None,
        on_candidates: CandidatesListener | None = None,
        on_error: ErrorListener | None = None,
    ):
        self.provider = provider
        self.config = config or PipelineConfig()
        self.form = form if form is not None else AddressForm()
        self.on_candidates = on_candidates
        self.on_error = on_error

        self.state = PipelineState.IDLE
        self.candidates: list[Candidate] = []

        self._token = 0
        self._awaiting_token: int | None = None  # token of the unresolved current search
        self._last_dispatched: str | None = None
        self._pending_query: str | None = None
        self._debounce_task: asyncio.Task | None = None
        self._requests: set[asyncio.Task] = set()

    @property
    def token(self) -> int:
        """The latest token issued."""
        return self._token

    @property
    def loading(self) -> bool:
        return self.state == PipelineState.LOADING

    # --- input side ---

    def on_input(self, value: str) -> None:
        query = value.strip()
        if len(query) < self.config.min_query_length:
            logger.debug(f"Skipping '{query}': shorter than {self.config.min_query_length} characters")
            return

        was_loading = self.loading
        self._cancel_debounce()
        self._pending_query = query
        self.state = PipelineState.DEBOUNCING
        if was_loading:
            self._notify_candidates()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounce(query))

    def dismiss(self) -> None:
        """Blur or explicit cancel. In-flight requests finish but are discarded."""
        self._cancel_debounce()
        self._next_token()
        self._awaiting_token = None
        self._last_dispatched = None
        self.candidates = []
        self.state = PipelineState.IDLE
        logger.debug(f"Dismissed suggestions, token now #{self._token}")
        self._notify_candidates()

    async def select(self, provider_id: str) -> AddressForm | None:
        """Promote a displayed candidate into the form.

        Returns the filled form, or None when the details lookup failed or was
        superseded.
        """
        candidate = next((c for c in self.candidates if c.provider_id == provider_id), None)
        if candidate is None:
            raise UnknownCandidateError(provider_id)

        self._cancel_debounce()
        token = self._next_token()
        self._awaiting_token = None

        if not self.provider.search_is_complete:
            self.state = PipelineState.LOADING
            self._notify_candidates()
            try:
                detailed = await asyncio.wait_for(
                    self.provider.details(provider_id),
                    timeout=self.config.request_timeout_s,
                )
            except (GeocodingError, asyncio.TimeoutError) as e:
                detailed = None
                if token == self._token:
                    logger.warning(f"Address details #{token} for '{provider_id}' failed: {e}")
            except Exception:
                detailed = None
                if token == self._token:
                    logger.exception(f"Address details #{token} for '{provider_id}' failed unexpectedly")

            if token != self._token:
                logger.debug(f"Discarding stale details #{token} for '{provider_id}'")
                return None
            if detailed is None:
                self.state = PipelineState.IDLE
                self._notify_candidates()
                self._notify_error()
                return None
            candidate = detailed

        apply_candidate(self.form, candidate)
        self.candidates = []
        # The promoted query is spent; typing it again must search again
        self._last_dispatched = None
        self._awaiting_token = None
        self.state = PipelineState.IDLE
        logger.info(f"Selected '{candidate.display_label}' ({provider_id})")
        self._notify_candidates()
        return self.form

    async def drain(self) -> None:
        """Wait until no debounce timer or request is outstanding."""
        while self._debounce_task is not None or self._requests:
            pending = [t for t in (self._debounce_task, *self._requests) if t is not None]
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        self._cancel_debounce()
        self._next_token()
        tasks = list(self._requests)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # --- internals ---

    def _next_token(self) -> int:
        self._token += 1
        return self._token

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None
        self._pending_query = None

    async def _debounce(self, query: str) -> None:
        await asyncio.sleep(self.config.debounce_s)
        self._debounce_task = None
        self._pending_query = None

        if query == self._last_dispatched:
            logger.debug(f"Skipping '{query}': same as the last dispatched query")
            waiting = self._awaiting_token == self._token
            self.state = PipelineState.LOADING if waiting else PipelineState.IDLE
            if waiting:
                self._notify_candidates()
            return

        self._dispatch(query)

    def _dispatch(self, query: str) -> None:
        token = self._next_token()
        self._last_dispatched = query
        self._awaiting_token = token
        self.state = PipelineState.LOADING
        logger.info(f"Dispatching address search #{token} for '{query}'")
        self._notify_candidates()

        task = asyncio.get_running_loop().create_task(self._search(token, query))
        self._requests.add(task)
        task.add_done_callback(self._requests.discard)

    def _is_current(self, token: int, query: str) -> bool:
        if token != self._token:
            return False
        # A newer, different value is waiting out its debounce window
        return self._pending_query is None or self._pending_query == query

    def _discard(self, token: int, query: str) -> None:
        logger.debug(f"Discarding stale response #{token} for '{query}' (latest #{self._token})")
        if token == self._token:
            # Never shown, so returning to this value must dispatch again
            self._awaiting_token = None
            self._last_dispatched = None

    async def _search(self, token: int, query: str) -> None:
        try:
            candidates = await asyncio.wait_for(
                self.provider.search(query, self.config.locale_filter, self.config.result_limit),
                timeout=self.config.request_timeout_s,
            )
        except (GeocodingError, asyncio.TimeoutError) as e:
            self._fail(token, query, e)
            return
        except Exception as e:
            if self._is_current(token, query):
                logger.exception(f"Address search #{token} for '{query}' failed unexpectedly")
            self._fail(token, query, e)
            return

        if not self._is_current(token, query):
            self._discard(token, query)
            return

        self._awaiting_token = None
        self.candidates = list(candidates)
        self.state = PipelineState.IDLE
        logger.info(f"Address search #{token} for '{query}' → {len(self.candidates)} candidates")
        self._notify_candidates()

    def _fail(self, token: int, query: str, error: Exception) -> None:
        if not self._is_current(token, query):
            self._discard(token, query)
            return

        logger.warning(f"Address search #{token} for '{query}' failed: {error!r}")
        self._awaiting_token = None
        self._last_dispatched = None
        self.candidates = []
        self.state = PipelineState.IDLE
        self._notify_candidates()
        self._notify_error()

    def _notify_candidates(self) -> None:
        if self.on_candidates is not None:
            self.on_candidates(list(self.candidates), self.loading)

    def _notify_error(self) -> None:
        if self.on_error is not None:
            self.on_error(GENERIC_ERROR_MESSAGE)
