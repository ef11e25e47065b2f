import re
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Page tokenizer
# ---------------------------------------------------------------------------
#
# Splits one page of raw markdown into an ordered list of tokens:
#
#   TEXT        literal markdown, copied through untouched
#   DEFINITION  [name]: block content     (start of line, ends at blank line)
#               [name](inline content)    (followed by a CALL for the same name)
#   CALL        [name]  $[name]  ![name]
#
# Fenced code blocks, 4-space indented blocks and `inline code` are copied
# through as TEXT without looking for variable syntax inside them.
#
# The scanner walks the page with a single cursor.  Each state handler looks
# at the text under the cursor and returns the next state:
#
#   IN_TEXT           advance, or hand over to one of the states below
#   IN_CODE_BLOCK     emit a code region verbatim
#   IN_CALL_PREFIX    read an optional ! or $ and the [name] label
#   IN_DEFINITION     read the block content after [name]:
#   IN_PAREN_CAPTURE  read the balanced (content) after [name]
# ---------------------------------------------------------------------------

TEXT = "text"
DEFINITION = "definition"
CALL = "call"

IN_TEXT = "in_text"
IN_CODE_BLOCK = "in_code_block"
IN_DEFINITION = "in_definition"
IN_CALL_PREFIX = "in_call_prefix"
IN_PAREN_CAPTURE = "in_paren_capture"

PREFIXES = ("!", "$")

# Whatever may follow the fence string on a closing fence line
_FENCE_TAIL_RE = re.compile(r"[~`]* *")


@dataclass
class Token:
    kind: str
    content: str = ""
    prefix: str = ""
    name: str = None
    resolved: bool = False


def normalize_name(name):
    """Trim and collapse whitespace runs, so `[my  var]` and `[my var]` match."""
    return re.sub(r"\s+", " ", name.strip())


def normalize_block_content(content):
    # Newlines are kept so tables and lists survive
    return re.sub(r"[ \t]+", " ", content.strip())


def normalize_inline_content(content):
    return re.sub(r"\s+", " ", content.strip())


def call_literal(prefix, name):
    return f"{prefix}[{name}]"


# ---------------------------------------------------------------------------
# Code region detection
# ---------------------------------------------------------------------------


def _line_end(source, pos):
    end = source.find("\n", pos)
    return len(source) if end == -1 else end


def _indented_code_end(source, pos):
    """
    End of a 4-space indented block starting at line start `pos`, including
    the blank lines that follow each code line.  None if there is none.
    """
    n = len(source)
    end = None
    cursor = pos
    while source.startswith("    ", cursor):
        line_end = _line_end(source, cursor)
        if line_end == cursor + 4:
            break
        end = line_end
        if line_end == n:
            break
        cursor = end = line_end + 1
        # Swallow blank (space-only) lines
        while True:
            probe = cursor
            while probe < n and source[probe] == " ":
                probe += 1
            if probe == n:
                cursor = end = probe
                break
            if source[probe] != "\n":
                break
            cursor = end = probe + 1
        if cursor == n:
            break
    return end


def _fenced_code_end(source, pos):
    """
    End of a ``` or ~~~ fenced block starting at line start `pos`.  The
    closing fence must use the same character and be at least as long.
    Unclosed fences are not code blocks.
    """
    n = len(source)
    cursor = pos
    while cursor < n and cursor - pos < 3 and source[cursor] == " ":
        cursor += 1
    if cursor >= n or source[cursor] not in "`~":
        return None

    fence_char = source[cursor]
    run_end = cursor
    while run_end < n and source[run_end] == fence_char:
        run_end += 1
    fence = source[cursor:run_end]
    if len(fence) < 3:
        return None

    opening_end = _line_end(source, run_end)
    if fence_char == "`" and "`" in source[run_end:opening_end]:
        return None

    if opening_end >= n:
        return None

    line_start = opening_end + 1
    while True:
        line_end = _line_end(source, line_start)
        line = source[line_start:line_end]
        indent = len(line) - len(line.lstrip(" "))
        if indent <= 3:
            rest = line[indent:]
            if rest.startswith(fence) and _FENCE_TAIL_RE.fullmatch(rest[len(fence):]):
                return line_end
        if line_end >= n:
            return None
        line_start = line_end + 1


def _inline_code_end(source, pos):
    closing = source.find("`", pos + 1)
    return None if closing == -1 else closing + 1


# ---------------------------------------------------------------------------
# Label and content scanning
# ---------------------------------------------------------------------------


def _label_end(source, open_bracket):
    """
    Index of the `]` closing the label opened at `open_bracket`, or None.
    Labels may not contain unescaped brackets and may not be blank.
    """
    n = len(source)
    cursor = open_bracket + 1
    while cursor < n:
        char = source[cursor]
        if char == "\\":
            if cursor + 1 >= n or source[cursor + 1] == "\n":
                return None
            cursor += 2
            continue
        if char == "[":
            return None
        if char == "]":
            if not source[open_bracket + 1:cursor].strip():
                return None
            return cursor
        cursor += 1
    return None


def _block_content_end(source, start):
    """
    End of the block content following `[name]:`.  Content is one or more
    lines that start (after optional spaces) with a non-space character and
    stops at the first blank line.
    """
    n = len(source)
    end = None
    cursor = start
    while True:
        probe = cursor
        if probe < n and source[probe] == "\n":
            probe += 1
        while probe < n and source[probe] == " ":
            probe += 1
        if probe >= n or source[probe].isspace():
            break
        cursor = end = _line_end(source, probe)
    return end


def _paren_close(source, open_paren):
    """
    Index of the `)` closing the inline definition opened at `open_paren`.

    The content must sit on one line and the line must hold a `)` after at
    least one character.  Escaped parens do not count; the first `)` that
    takes the depth below zero closes the capture.
    """
    line_end = _line_end(source, open_paren)
    last = source.rfind(")", open_paren + 2, line_end)
    if last == -1:
        return None

    depth = 0
    cursor = open_paren + 1
    while cursor < last:
        char = source[cursor]
        if char == "\\":
            cursor += 2
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return cursor
        cursor += 1
    return last


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class _Scanner:
    def __init__(self, source):
        self.source = source
        self.cursor = 0
        self.text_start = 0
        self.tokens = []

        # Construct under inspection
        self.mark = 0
        self.mark_end = 0
        self.prefix = ""
        self.name = None

        self.handlers = {
            IN_TEXT: self._in_text,
            IN_CODE_BLOCK: self._in_code_block,
            IN_CALL_PREFIX: self._in_call_prefix,
            IN_DEFINITION: self._in_definition,
            IN_PAREN_CAPTURE: self._in_paren_capture,
        }

    def scan(self):
        state = IN_TEXT
        while state != IN_TEXT or self.cursor < len(self.source):
            state = self.handlers[state]()
        self._flush_text(len(self.source))
        return self.tokens

    def _at_line_start(self, pos):
        return pos == 0 or self.source[pos - 1] == "\n"

    def _flush_text(self, end):
        if end > self.text_start:
            self.tokens.append(Token(TEXT, self.source[self.text_start:end]))
        self.text_start = end

    def _consume(self, token, end):
        self._flush_text(self.mark)
        self.tokens.append(token)
        self.cursor = self.text_start = end

    # -- states --------------------------------------------------------

    def _in_text(self):
        source = self.source
        pos = self.cursor

        end = None
        if self._at_line_start(pos):
            end = _indented_code_end(source, pos)
            if end is None:
                end = _fenced_code_end(source, pos)
        if end is None and source[pos] == "`":
            end = _inline_code_end(source, pos)
        if end is not None:
            self.mark, self.mark_end = pos, end
            return IN_CODE_BLOCK

        if source[pos] == "[" or source[pos] in PREFIXES:
            self.mark = pos
            return IN_CALL_PREFIX

        self.cursor += 1
        return IN_TEXT

    def _in_code_block(self):
        self._consume(Token(TEXT, self.source[self.mark:self.mark_end]), self.mark_end)
        return IN_TEXT

    def _in_call_prefix(self):
        source = self.source
        pos = self.mark
        prefix = ""
        if source[pos] in PREFIXES:
            prefix = source[pos]
            pos += 1
            if pos >= len(source) or source[pos] != "[":
                self.cursor = self.mark + 1
                return IN_TEXT

        label_end = _label_end(source, pos)
        if label_end is None:
            self.cursor = self.mark + 1
            return IN_TEXT

        self.prefix = prefix
        self.name = normalize_name(source[pos + 1:label_end])
        self.mark_end = label_end + 1

        following = source[self.mark_end:self.mark_end + 1]
        if following == ":" and self._at_line_start(self.mark):
            return IN_DEFINITION
        if following == "(":
            return IN_PAREN_CAPTURE
        self._emit_call()
        return IN_TEXT

    def _in_definition(self):
        start = self.mark_end + 1
        end = _block_content_end(self.source, start)
        if end is None:
            self._emit_call()
            return IN_TEXT

        content = normalize_block_content(self.source[start:end])
        token = Token(DEFINITION, content, self.prefix, self.name)
        self._consume(token, end)
        return IN_TEXT

    def _in_paren_capture(self):
        open_paren = self.mark_end
        close = _paren_close(self.source, open_paren)
        if close is None:
            # [name]( without a closing paren is plain text
            self.cursor = self.mark_end
            return IN_TEXT

        content = normalize_inline_content(self.source[open_paren + 1:close])
        self._consume(Token(DEFINITION, content, self.prefix, self.name), close + 1)
        self.tokens.append(
            Token(CALL, call_literal(self.prefix, self.name), self.prefix, self.name)
        )
        return IN_TEXT

    def _emit_call(self):
        token = Token(CALL, call_literal(self.prefix, self.name), self.prefix, self.name)
        self._consume(token, self.mark_end)


def tokenize(source):
    """Split one page of raw markdown into TEXT, DEFINITION and CALL tokens."""
    return _Scanner(source).scan()
