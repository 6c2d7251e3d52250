"""
Field Classification & Fill Strategy

Turns the declared ``{selector, value}`` list of a task into the working set
of fields present on the live page, and fills each of them with a strategy
chosen from the selector or the element's shape.
"""

import logging
from datetime import date, datetime
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

from ..browser_automation import BrowserSession
from .cancellation import CancellationToken
from .errors import FieldFillError
from .models import FormField

logger = logging.getLogger(__name__)

# Marker set on an element once a declared selector has claimed it.
CLAIM_ATTRIBUTE = "data-autofill-claimed"

FULL_NAME_SELECTORS = (
    "#userName",
    "#name",
    "#fullName",
    "#user-name",
    'input[placeholder="Full Name"]',
    'input[placeholder="Name"]',
)

DATE_OF_BIRTH_SELECTOR = "#dateOfBirthInput"
SEARCHABLE_DROPDOWN_SELECTORS = ("#state", "#city")
AUTOCOMPLETE_MARKER = "subjectsInput"

DATEPICKER_YEAR = ".react-datepicker__year-select"
DATEPICKER_MONTH = ".react-datepicker__month-select"
DATEPICKER_DAY = ".react-datepicker__day--{day:03d}:not(.react-datepicker__day--outside-month)"
DROPDOWN_OPTION = 'div[id^="react-select"][id*="-option-"]'
AUTOCOMPLETE_MENU = ".subjects-auto-complete__menu"

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)

LogFn = Callable[[str], None]
FileRequest = Callable[[str], Awaitable[str]]


class FillStrategy(str, Enum):
    DATE_PICKER = "date_picker"
    SEARCHABLE_DROPDOWN = "searchable_dropdown"
    AUTOCOMPLETE = "autocomplete"
    LABEL_CLICK = "label_click"
    SELECT_OPTION = "select_option"
    FILE_UPLOAD = "file_upload"
    TOGGLE = "toggle"
    TEXT = "text"


# ------------------------------------------------------------------
# Strategy resolution
# ------------------------------------------------------------------


def strategy_for_selector(selector: str) -> Optional[FillStrategy]:
    """Strategies decided by the selector alone (known custom widgets)."""
    if selector == DATE_OF_BIRTH_SELECTOR:
        return FillStrategy.DATE_PICKER
    if selector in SEARCHABLE_DROPDOWN_SELECTORS:
        return FillStrategy.SEARCHABLE_DROPDOWN
    if AUTOCOMPLETE_MARKER in selector:
        return FillStrategy.AUTOCOMPLETE
    return None


def strategy_for_element(tag: str, input_type: Optional[str]) -> FillStrategy:
    tag = (tag or "").lower()
    input_type = (input_type or "").lower()
    if tag == "label":
        return FillStrategy.LABEL_CLICK
    if tag == "select":
        return FillStrategy.SELECT_OPTION
    if input_type == "file":
        return FillStrategy.FILE_UPLOAD
    if input_type in ("checkbox", "radio"):
        return FillStrategy.TOGGLE
    return FillStrategy.TEXT


async def resolve_strategy(session: BrowserSession, selector: str) -> FillStrategy:
    strategy = strategy_for_selector(selector)
    if strategy is not None:
        return strategy
    tag, input_type = await session.describe(selector)
    return strategy_for_element(tag, input_type)


def parse_date(value: str) -> date:
    """Parse the value given for a date-of-birth picker."""
    text = (value or "").strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise FieldFillError(f"Unrecognised date value: {value!r}")


# ------------------------------------------------------------------
# Working set
# ------------------------------------------------------------------


def _has_name_field(fields: Sequence[FormField], marker: str) -> bool:
    return any(marker in f.selector.lower() for f in fields)


async def classify_fields(
    session: BrowserSession,
    declared: Sequence[FormField],
    token: CancellationToken,
    log: LogFn,
) -> List[FormField]:
    """Compute the working set for *declared* on the current page.

    Unresolvable selectors are skipped silently, the first selector to
    claim an element wins, and a combined full-name field is appended when
    discrete first/last name inputs are missing.
    """
    working: List[FormField] = []
    first_name = ""
    last_name = ""

    for form_field in declared:
        token.check()
        selector = form_field.selector
        lowered = selector.lower()
        if "first" in lowered:
            first_name = form_field.value
        if "last" in lowered:
            last_name = form_field.value

        try:
            if not await session.exists(selector):
                continue
            if await session.claim(selector, CLAIM_ATTRIBUTE):
                logger.debug("Skipping %s: element already claimed", selector)
                continue
            if await session.bounding_box(selector) is None:
                logger.debug("%s has no bounding box, keeping it anyway", selector)
        except Exception as exc:
            logger.debug("Skipping unresolvable selector %s: %s", selector, exc)
            continue
        working.append(form_field)

    missing_names = not _has_name_field(working, "first") or not _has_name_field(working, "last")
    if missing_names and first_name and last_name:
        log("Specific name fields missing, looking for Full Name field...")
        covered = {f.selector for f in working}
        for selector in FULL_NAME_SELECTORS:
            token.check()
            if selector in covered:
                continue
            try:
                if not await session.exists(selector):
                    continue
                if await session.claim(selector, CLAIM_ATTRIBUTE):
                    continue
            except Exception as exc:
                logger.debug("Full name probe %s failed: %s", selector, exc)
                continue
            working.append(FormField(selector, f"{first_name} {last_name}"))
            log(f"Found generic name field {selector}, combining First and Last name.")
            break

    return working


# ------------------------------------------------------------------
# Filling
# ------------------------------------------------------------------


class FieldFiller:
    """Fills one working-set field at a time on an open session.

    Args:
        session:      Open browser session.
        token:        Cancellation token of the current run.
        log:          Appends a line to the task's audit trail.
        request_file: Coroutine suspending the pipeline until a file is
                      uploaded for the given selector; returns its path.
        wait_timeout: Seconds to wait for selectors and widget menus.
        settle_delay: Pause after scrolling a field into view.
    """

    def __init__(
        self,
        session: BrowserSession,
        token: CancellationToken,
        log: LogFn,
        request_file: FileRequest,
        wait_timeout: float = 5.0,
        settle_delay: float = 0.3,
    ) -> None:
        self.session = session
        self.token = token
        self.log = log
        self.request_file = request_file
        self.wait_timeout = wait_timeout
        self.settle_delay = settle_delay
        self._handlers = {
            FillStrategy.DATE_PICKER: self._fill_date_picker,
            FillStrategy.SEARCHABLE_DROPDOWN: self._fill_searchable_dropdown,
            FillStrategy.AUTOCOMPLETE: self._fill_autocomplete,
            FillStrategy.LABEL_CLICK: self._fill_label,
            FillStrategy.SELECT_OPTION: self._fill_select,
            FillStrategy.FILE_UPLOAD: self._fill_file,
            FillStrategy.TOGGLE: self._fill_toggle,
            FillStrategy.TEXT: self._fill_text,
        }

    async def fill(self, form_field: FormField) -> FillStrategy:
        """Fill *form_field*; raises on failure.  Returns the strategy used."""
        selector = form_field.selector
        await self.token.race(self.session.wait_for_selector(selector, self.wait_timeout))
        await self.session.scroll_into_view(selector)
        await self.token.sleep(self.settle_delay)

        strategy = await resolve_strategy(self.session, selector)
        logger.debug("Filling %s with strategy %s", selector, strategy.value)
        await self._handlers[strategy](form_field)
        return strategy

    async def _wait_for(self, selector: str) -> None:
        await self.token.race(self.session.wait_for_selector(selector, self.wait_timeout))

    # -- selector-driven widgets --

    async def _fill_date_picker(self, form_field: FormField) -> None:
        when = parse_date(form_field.value)
        await self.session.click(form_field.selector)
        await self._wait_for(DATEPICKER_YEAR)
        await self.session.select_option(DATEPICKER_YEAR, str(when.year))
        # Month options are zero-based.
        await self.session.select_option(DATEPICKER_MONTH, str(when.month - 1))
        await self.session.click(DATEPICKER_DAY.format(day=when.day))
        self.log(f"Selected Date: {form_field.value}")

    async def _fill_searchable_dropdown(self, form_field: FormField) -> None:
        await self.session.click(form_field.selector)
        await self.session.type_text(form_field.value)
        await self._wait_for(DROPDOWN_OPTION)
        await self.session.press("Enter")
        self.log(f"Selected '{form_field.value}' in {form_field.selector}")

    async def _fill_autocomplete(self, form_field: FormField) -> None:
        await self.session.click(form_field.selector)
        await self.session.type_text(form_field.value, form_field.selector)
        await self._wait_for(AUTOCOMPLETE_MENU)
        await self.session.press("Enter")
        self.log(f"Selected Subject: {form_field.value}")

    # -- element-driven --

    async def _fill_label(self, form_field: FormField) -> None:
        await self.session.click(form_field.selector)
        self.log(f"Clicked label {form_field.selector}")
        self.log(f"Filled {form_field.selector}")

    async def _fill_select(self, form_field: FormField) -> None:
        await self.session.select_option(form_field.selector, form_field.value)
        self.log(f"Filled {form_field.selector}")

    async def _fill_file(self, form_field: FormField) -> None:
        self.log(f"File input detected: {form_field.selector}")
        file_path = await self.request_file(form_field.selector)
        await self.session.upload_file(form_field.selector, file_path)
        self.log("File uploaded to form")
        self.log(f"Filled {form_field.selector}")

    async def _fill_toggle(self, form_field: FormField) -> None:
        try:
            await self.session.click(form_field.selector)
        except Exception as exc:
            self.token.check()
            logger.debug("Click on %s failed (%s), dispatching DOM click", form_field.selector, exc)
            await self.session.force_click(form_field.selector)
        self.log(f"Filled {form_field.selector}")

    async def _fill_text(self, form_field: FormField) -> None:
        selector = form_field.selector
        try:
            await self.session.click(selector, click_count=3)
            await self.session.press("Backspace")
            await self.session.type_text(form_field.value, selector)
        except Exception as exc:
            self.token.check()
            logger.debug("Typing into %s failed (%s), setting value directly", selector, exc)
            await self.session.set_value(selector, form_field.value)
            self.log(f"Filled {selector} via JS fallback")
        self.log(f"Filled {selector}")
