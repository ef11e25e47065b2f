import logging
import re
from dataclasses import dataclass
from pathlib import Path

from variables_math import evaluate
from variables_tokenizer import (
    CALL,
    DEFINITION,
    TEXT,
    normalize_name,
    tokenize,
)

log = logging.getLogger("mkdocs.hooks")

# ---------------------------------------------------------------------------
# Document variable engine
# ---------------------------------------------------------------------------
#
# Definitions (in any .md file):
#   [name]: some content          -> block definition, may span several lines
#                                    up to the next blank line
#   [name](some content)          -> inline definition, also rendered in place
#   $[name](some content)         -> same, rendered as the raw value
#
# Calls:
#   $[name]                       -> raw value of the variable
#   [name]                        -> link, when the value looks like
#                                    `url "optional title"`
#   ![name]                       -> image, same rule as links
#   $[num * 2 + 1]                -> restricted math, variables substituted
#   $[toRomans(chapter)]          -> formatting functions (see variables_math)
#
# Lookup order for a call on page N:
#   1. Page N, N-1, ... 0 (latest definition wins within a page)
#   2. Hoisting: highest known page down to 0.  Later pages are only known
#      once they have been rendered, which is what the prepass in on_nav()
#      is for.
#
# Anything that cannot be resolved is left in the page as written.  Variable
# syntax inside code blocks and `inline code` is never touched.
# ---------------------------------------------------------------------------

# Calls nested inside definition content: [var]: $[title] $[name]
NESTED_CALL_RE = re.compile(r"([!$]?)\[((?!\s*\])(?:\\.|[^\[\]\\])+)\]")

# url or <url>, optionally followed by "title", 'title' or (title)
LINK_RE = re.compile(
    r"^([^<\s][^\s]*|<.*?>)"
    r"""(?: ("(?:\\"|[^"])*"|'(?:\\'|[^'])*'|\((?:\\\(|\\\)|[^()])*\)))?$""",
    re.MULTILINE,
)

# Function heads and operators separating the operands of a math call
MATH_SPLIT_RE = re.compile(r"[a-z]+\(|[+\-*/^(),]")

NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

FRONT_MATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n?", re.DOTALL)


def _is_number(text):
    """Blank text counts as a number, like an empty math operand."""
    text = text.strip()
    return not text or NUMBER_RE.fullmatch(text) is not None


def format_link(prefix, name, content):
    """
    Turn a variable value into a markdown link or image.
    Returns None when the value does not look like `url "title"`.
    """
    match = LINK_RE.search(content)
    if not match:
        return None

    href = match.group(1)
    title = match.group(2)[1:-1] if match.group(2) else None
    target = f'{href} "{title}"' if title else href

    if prefix == "!":
        return f"![{name}]({target})"
    return f"[{name}]({target})"


@dataclass
class VariableRecord:
    content: str
    resolved: bool = True
    external: bool = False


class VariableStore:
    """Variables per page index, keyed by normalized name."""

    def __init__(self):
        self.pages = {}

    def lookup(self, name, page, hoist=True):
        """
        Find the record for `name` as seen from `page`.

        Walks back from `page` to 0, then (when hoisting) from the highest
        known page down to 0.  Unresolved records are returned too; callers
        decide whether a partial value is good enough.
        """
        name = normalize_name(name)
        for index in range(page, -1, -1):
            record = self.pages.get(index, {}).get(name)
            if record is not None:
                return record

        if hoist and self.pages:
            for index in range(max(self.pages), -1, -1):
                record = self.pages.get(index, {}).get(name)
                if record is not None:
                    return record
        return None

    def set(self, page, name, content, resolved=True, external=False):
        self.pages.setdefault(page, {})[normalize_name(name)] = VariableRecord(
            content, resolved, external
        )

    def clear_page(self, page):
        """Drop a page's variables, keeping host-injected ones for one more pass."""
        existing = self.pages.get(page, {})
        self.pages[page] = {
            name: VariableRecord(record.content, record.resolved)
            for name, record in existing.items()
            if record.external
        }

    def remove_page(self, page):
        self.pages.pop(page, None)


class VariableEngine:
    """Encapsulates the variable store, the token queue and all page state."""

    def __init__(self):
        self.store = VariableStore()
        self.tokens = []
        self.page = 0

        # Calls left unresolved by the last preprocess()
        self.unresolved = []

        # Hook configuration (extra.variables in mkdocs.yml)
        self.prepass = True
        self.page_number_variable = None
        self.report_unresolved = True
        self.configured_values = {}

        # Per-build state
        self.page_order = {}
        self.unresolved_report = []

    # ------------------------------------------------------------------
    # Host interface
    # ------------------------------------------------------------------

    def set_page(self, index):
        if index < 0:
            raise ValueError(f"Page index must not be negative, got {index}")
        self.page = index

    def set_variable(self, name, content, page=0):
        """Inject a resolved value from outside the document."""
        if page < 0:
            return
        self.store.set(page, name, content, external=True)

    def get_variable(self, name, page=0):
        record = self.store.lookup(name, page)
        if record is not None and record.resolved:
            return record.content
        return None

    def clear_queue(self):
        self.tokens = []
        self.store.remove_page(self.page)

    def preprocess(self, source):
        """Resolve all variables on the current page and return the new markdown."""
        self.store.clear_page(self.page)
        self.tokens = tokenize(source)
        self._resolve_tokens()

        self.unresolved = [t.content for t in self.tokens if t.kind == CALL]
        for literal in self.unresolved:
            log.debug(f"[variables] Unresolved call on page {self.page}: {literal}")

        return "".join(t.content for t in self.tokens)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _resolve_tokens(self):
        """
        Iterate until a pass makes no progress, then run one last pass that
        accepts partially resolved values.  Definitions never reach the
        output.
        """
        budget = len(self.tokens) + 1
        for token in self.tokens:
            if token.kind == DEFINITION:
                budget += len(NESTED_CALL_RE.findall(token.content))

        passes = 0
        while self._resolution_pass():
            passes += 1
            if passes >= budget:
                log.debug(
                    f"[variables] Page {self.page}: stopped after {passes} passes "
                    f"without reaching a fixed point"
                )
                break

        self._resolution_pass(final=True)
        self.tokens = [t for t in self.tokens if t.kind != DEFINITION]

    def _resolution_pass(self, final=False):
        progress = False
        for token in self.tokens:
            if token.kind == DEFINITION and not final:
                if self._resolve_definition(token):
                    progress = True
            elif token.kind == CALL:
                value = self.replace_variable(
                    token.prefix, token.name, allow_unresolved=final
                )
                if value is None:
                    continue
                token.kind = TEXT
                token.content = value
                progress = True

        if not final:
            self.tokens = [
                t for t in self.tokens if not (t.kind == DEFINITION and t.resolved)
            ]
        return progress

    def _resolve_definition(self, token):
        """
        Substitute the nested calls that can be resolved right now and store
        the (possibly partial) value.  Returns True on progress.
        """
        complete = True

        def _substitute(match):
            nonlocal complete
            value = self.replace_variable(match.group(1), match.group(2), hoist=False)
            if value is None:
                complete = False
                return match.group(0)
            return value

        content = NESTED_CALL_RE.sub(_substitute, token.content)
        changed = content != token.content
        token.content = content
        token.resolved = complete
        self.store.set(self.page, token.name, content, resolved=complete)
        return complete or changed

    def replace_variable(self, prefix, name, allow_unresolved=False, hoist=True):
        """
        Compute the text a call renders to, or None if it cannot be resolved
        (yet).
        """
        name = normalize_name(name)

        identifiers = [
            piece.strip() for piece in MATH_SPLIT_RE.split(name) if not _is_number(piece)
        ]
        if prefix == "$" and (not identifiers or identifiers[0] != name):
            return self._evaluate_math(name, identifiers)

        record = self.store.lookup(name, self.page, hoist=hoist)
        if record is None or (not record.resolved and not allow_unresolved):
            return None

        if prefix == "$":
            return record.content
        return format_link(prefix, name, record.content)

    def _evaluate_math(self, expression, identifiers):
        for identifier in identifiers:
            record = self.store.lookup(identifier, self.page, hoist=False)
            if (
                record is None
                or not record.resolved
                or not record.content
                or not _is_number(record.content)
            ):
                continue
            value = record.content.strip()
            expression = re.sub(
                rf"(?<!\w){re.escape(identifier)}(?!\w)", lambda m: value, expression
            )
        return evaluate(expression)

    # ------------------------------------------------------------------
    # MkDocs build support
    # ------------------------------------------------------------------

    def configure(self, settings):
        """Apply the extra.variables block from mkdocs.yml and reset build state."""
        self.page_order = {}
        self.unresolved_report = []

        if settings is None:
            settings = {}
        if not isinstance(settings, dict):
            log.warning(
                f"[variables] extra.variables must be a mapping, got "
                f"{type(settings).__name__}; ignoring it"
            )
            settings = {}

        self.prepass = bool(settings.get("prepass", True))
        self.page_number_variable = settings.get("page_number")
        self.report_unresolved = bool(settings.get("report_unresolved", True))

        values = settings.get("values") or {}
        if not isinstance(values, dict):
            log.warning("[variables] extra.variables.values must be a mapping; ignoring it")
            values = {}
        self.configured_values = {str(k): str(v) for k, v in values.items()}

        if self.configured_values:
            log.info(
                f"[variables] Loaded {len(self.configured_values)} configured "
                f"variable(s)"
            )

    def page_index(self, src_path):
        """Navigation position of a page; pages outside the nav go last."""
        if src_path not in self.page_order:
            self.page_order[src_path] = len(self.page_order)
        return self.page_order[src_path]

    def render_page(self, index, markdown):
        self.set_page(index)
        if index == 0:
            for name, content in self.configured_values.items():
                self.set_variable(name, content, 0)
        if self.page_number_variable:
            self.set_variable(self.page_number_variable, str(index + 1), index)
        return self.preprocess(markdown)

    def run_prepass(self, pages, docs_dir):
        """
        Render every page source once, in navigation order, so that hoisted
        calls can see definitions from later pages during the real render.
        """
        seeded = 0
        for index, page in enumerate(pages):
            path = Path(docs_dir) / page.file.src_path
            try:
                markdown = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                log.warning(f"[variables] Prepass could not read {page.file.src_path}: {e}")
                continue
            markdown = FRONT_MATTER_RE.sub("", markdown, count=1)
            self.render_page(index, markdown)
            seeded += 1

        log.info(f"[variables] Prepass seeded variables from {seeded} page(s)")
        return seeded

    def record_unresolved(self, src_path):
        # Bare [text] is ordinary prose far too often to report
        for literal in self.unresolved:
            if literal.startswith("$"):
                self.unresolved_report.append(f"{src_path}: {literal}")


# ---------------------------------------------------------------------------
# Module-level singleton, kept across builds so `mkdocs serve` rebuilds
# keep hoisted values
# ---------------------------------------------------------------------------

_engine = VariableEngine()


def set_page(index):
    _engine.set_page(index)


def set_variable(name, content, page=0):
    _engine.set_variable(name, content, page)


def get_variable(name, page=0):
    return _engine.get_variable(name, page)


def clear_queue():
    _engine.clear_queue()


def preprocess(source):
    return _engine.preprocess(source)


# ---------------------------------------------------------------------------
# MkDocs hook entry points
# ---------------------------------------------------------------------------


def on_config(config, **kwargs):
    """Read extra.variables and reset per-build state."""
    logging.getLogger("mkdocs.hooks").setLevel(logging.INFO)

    extra = config.get("extra") or {}
    _engine.configure(extra.get("variables"))
    return config


def on_nav(nav, config, files, **kwargs):
    """Number the pages in navigation order and seed the store."""
    _engine.page_order = {}
    for page in nav.pages:
        _engine.page_index(page.file.src_path)

    if _engine.prepass:
        _engine.run_prepass(nav.pages, config.get("docs_dir", "."))
    return nav


def on_page_markdown(markdown, page, config, files, **kwargs):
    """Variable resolution on each page's markdown."""
    src = page.file.src_path
    index = _engine.page_index(src)

    markdown = _engine.render_page(index, markdown)
    _engine.record_unresolved(src)

    return markdown


def on_post_build(config, **kwargs):
    """Post-build summary."""
    if _engine.report_unresolved and _engine.unresolved_report:
        log.warning("")
        log.warning(
            f"[variables] Found {len(_engine.unresolved_report)} unresolved "
            f"variable call(s):"
        )
        for entry in _engine.unresolved_report:
            log.warning(f"  {entry}")
        log.warning("")

    return config
