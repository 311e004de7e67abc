#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import argparse
import html
import logging
import re
import sys

logger = logging.getLogger(__name__)

#==============================================================================
# Globals

LIST_MARKER = ' *'
FENCE = '```'
LINE_BREAK = '<br/>'
MAX_HEADING_LEVEL = 6

C_SPACE = ' '
C_BANG = '!'
C_LBRACKET = '['
C_RBRACKET = ']'
C_LPAREN = '('
C_RPAREN = ')'

re_alnum = re.compile(r'[0-9a-zA-Z]')

#==============================================================================
# HTML Escaping

HTMLSPECIAL = '[&<>"\']'
re_html_special = re.compile(HTMLSPECIAL)

UNSAFE_MAP = {
    '&': '&amp;',
    '<': '&lt;',
    '>': '&gt;',
    '"': '&quot;',
    "'": '&#039;',
}


def replace_unsafe_char(char):
    return UNSAFE_MAP.get(char, char)

def escape_html(string):
    """Replace the five HTML-sensitive characters with entities.

    All characters are replaced in one pass, so the `&` of an entity produced
    here is never escaped again."""
    if string is None:
        return ''
    if re.search(re_html_special, string):
        return re.sub(re_html_special, lambda m: replace_unsafe_char(m.group()), string)
    else:
        return string

def unescape_html(string):
    """Decode entities back into characters, the inverse of `escape_html`"""
    if string is None:
        return ''
    return html.unescape(string)

#==============================================================================
# Inline Formatter

class FormatRule(object):
    """A delimiter and the tag its span is wrapped in"""
    def __init__(self, delimiter, tag):
        self.delimiter = delimiter
        self.tag = tag

    def wrap(self, text):
        return '<{0}>{1}</{0}>'.format(self.tag, text)

    def __repr__(self):
        return 'FormatRule(%r, %r)' % (self.delimiter, self.tag)

# `**` must be tried before `*`
FORMAT_RULES = (
    FormatRule('**', 'strong'),
    FormatRule('*',  'em'),
    FormatRule('~~', 'del'),
    FormatRule('__', 'u'),
    FormatRule('`',  'code'),
)

class InlineFormatter(object):
    """Inline formatter with a single slot for the active span.

    Spans never nest: while one span is open, delimiters of any other rule are
    kept as literal text. A span still open at the end of the line loses its
    opening delimiter and its text is emitted unwrapped."""

    def __init__(self, rules=FORMAT_RULES):
        self.rules = rules
        self.by_delimiter = {rule.delimiter: rule for rule in rules}

    def match(self, line, pos):
        """Return the rule whose delimiter starts at `pos`, preferring two-character
        delimiters, or None."""
        rule = self.by_delimiter.get(line[pos:pos+2])
        if rule is None:
            rule = self.by_delimiter.get(line[pos])
        return rule

    def format(self, line):
        result = []
        buffer = []
        active = None

        pos = 0
        while pos < len(line):
            rule = self.match(line, pos)
            if rule is None:
                buffer.append(line[pos])
                pos += 1
                continue

            pos += len(rule.delimiter)
            if active is None:
                # open
                result.extend(buffer)
                buffer = []
                active = rule
            elif rule is active:
                # close
                result.append(rule.wrap(''.join(buffer)))
                buffer = []
                active = None
            else:
                buffer.append(rule.delimiter)

        if active is not None:
            logger.debug('unclosed %r span rendered as plain text', active.delimiter)
        result.extend(buffer)
        return ''.join(result)

#==============================================================================
# Link Extractor

class LinkExtractor(object):
    """Turn `[text](url)` into anchors.

    `[text]` without a following `(` is kept literally. A link whose text or
    url is never terminated swallows the rest of the line."""

    NORMAL    = 'normal'
    LINK_TEXT = 'link-text'
    LINK_URL  = 'link-url'

    def anchor(self, text, url):
        return '<a href="{0}">{1}</a>'.format(escape_html(url), escape_html(text))

    def extract(self, line):
        result = []
        buffer = []
        text = []
        url = []
        mode = LinkExtractor.NORMAL

        pos = 0
        while pos < len(line):
            char = line[pos]
            pos += 1

            if mode == LinkExtractor.NORMAL:
                if char == C_LBRACKET:
                    result.extend(buffer)
                    buffer = []
                    mode = LinkExtractor.LINK_TEXT
                else:
                    buffer.append(char)

            elif mode == LinkExtractor.LINK_TEXT:
                if char != C_RBRACKET:
                    text.append(char)
                elif line[pos:pos+1] == C_LPAREN:
                    pos += 1
                    mode = LinkExtractor.LINK_URL
                else:
                    result.append(C_LBRACKET + ''.join(text) + C_RBRACKET)
                    text = []
                    mode = LinkExtractor.NORMAL

            else:
                if char == C_RPAREN:
                    result.append(self.anchor(''.join(text), ''.join(url)))
                    text = []
                    url = []
                    mode = LinkExtractor.NORMAL
                else:
                    url.append(char)

        if mode != LinkExtractor.NORMAL:
            logger.debug('unterminated link in %s mode dropped: %r', mode, line)
        result.extend(buffer)
        return ''.join(result)

#==============================================================================
# Line Object

class Line(object):
    """A source line, plus the processed forms the block rules look at"""
    def __init__(self, line, line_num):
        super(Line, self).__init__()
        self.line      = line
        self.line_num  = line_num
        self.stripped  = line.strip()

        # filled in by the converter for lines outside lists and code fences
        self.formatted = None    # after inline formatting
        self.text      = None    # after inline formatting and link extraction

#==============================================================================
# Blocks

class Block(object):
    """A top-level unit of output"""
    name = 'Block'

    def __init__(self, content=''):
        self.content = content

    def __repr__(self):
        return '%s(%r)' % (self.name, self.content)

class Heading(Block):
    name = 'Heading'

    def __init__(self, level, content):
        super(Heading, self).__init__(content)
        self.level = level

class Paragraph(Block):
    name = 'Paragraph'

class BlockQuote(Block):
    name = 'BlockQuote'

class Image(Block):
    name = 'Image'

    def __init__(self, src, alt=''):
        super(Image, self).__init__(src)
        self.src = src
        self.alt = alt

class List(Block):
    name = 'List'

    def __init__(self, items):
        super(List, self).__init__()
        self.items = items

class CodeBlock(Block):
    name = 'CodeBlock'

    def __init__(self, lines):
        super(CodeBlock, self).__init__('\n'.join(lines))

#------------------------------------------------------------------------------

class BlockParser(object):
    """Parse a processed line into a block"""

    precedence = 100 # smaller number is tried first

    @staticmethod
    def parse(line):
        """return a block if the line matches, otherwise return None"""
        pass

class HeadingParser(BlockParser):
    precedence = 10
    re_atx_heading = re.compile(r'^(#{1,%d}) ' % MAX_HEADING_LEVEL)

    @staticmethod
    def parse(line):
        match = HeadingParser.re_atx_heading.match(line.text)
        if match is None:
            return None
        return Heading(len(match.group(1)), line.text[match.end():].strip())

class ParagraphParser(BlockParser):
    precedence = 20

    @staticmethod
    def parse(line):
        if re_alnum.match(line.text) is None:
            return None
        return Paragraph(line.text)

class BlockQuoteParser(BlockParser):
    precedence = 30

    @staticmethod
    def parse(line):
        if not line.text.startswith('> '):
            return None
        return BlockQuote(line.text[2:])

class ImageParser(BlockParser):
    precedence = 40

    @staticmethod
    def parse(line):
        # read before link extraction, which would turn `[alt](src)` into an anchor
        text = line.formatted
        if not text.startswith(C_BANG):
            return None

        alt = ''
        if (text[1:2] == C_LBRACKET and C_RBRACKET in text
                and C_LPAREN in text and C_RPAREN in text):
            alt = text[text.index(C_LBRACKET)+1:text.rindex(C_RBRACKET)]
            src = text[text.index(C_LPAREN)+1:text.rindex(C_RPAREN)]
        elif text[1:2] == C_LPAREN and C_RPAREN in text:
            src = text[text.index(C_LPAREN)+1:text.rindex(C_RPAREN)]
        else:
            return None

        if not src:
            return None
        return Image(src, alt)

class BlockFactory(object):
    """Try every block parser in precedence order"""

    block_parsers = sorted(BlockParser.__subclasses__(), key=lambda b: b.precedence)

    @staticmethod
    def matched_block(line):
        """iterate through all block parsers trying to parse the line.

        :returns: the first block that matches, if no block matches return None.

        """
        for b in BlockFactory.block_parsers:
            ret = b.parse(line)
            if ret is not None:
                return ret
        return None

#==============================================================================
# HTML Renderer

def noop(block):
    return ''

class HTMLRenderer(object):
    """Render a single block to (unescaped) HTML"""

    def render(self, block):
        method = getattr(self, 'render'+block.name, noop)
        return method(block)

    def _tag(self, tagname, attrs=[], selfclosing=False):
        result = '<'+tagname
        for attr in attrs:
            result += " " + attr[0] + '="' + attr[1] + '"'

        if selfclosing:
            result += ' /'
        result += '>'
        return result

    def renderHeading(self, block):
        tagname = 'h'+str(block.level)
        return self._tag(tagname) + block.content + self._tag('/'+tagname)

    def renderParagraph(self, block):
        # the dialect closes paragraphs with a second opening tag
        return self._tag('p') + block.content + self._tag('p')

    def renderBlockQuote(self, block):
        return self._tag('blockquote') + block.content + self._tag('/blockquote')

    def renderImage(self, block):
        attrs = [('src', block.src)]
        if block.alt:
            attrs.append(('alt', block.alt))
        return self._tag('img', attrs, selfclosing=True)

    def renderList(self, block):
        items = ''.join(self._tag('li') + item + self._tag('/li') for item in block.items)
        return self._tag('ul') + items + self._tag('/ul')

    def renderCodeBlock(self, block):
        return self._tag('pre') + self._tag('code') + block.content + self._tag('/code') + self._tag('/pre')

#==============================================================================
# Converter

class Mode(object):
    NORMAL        = 'normal'
    IN_LIST       = 'in-list'
    IN_CODE_FENCE = 'in-code-fence'

class LineKind(object):
    LIST_MARKER = 'list-marker'
    FENCE       = 'fence'
    BLANK       = 'blank'
    TEXT        = 'text'

# (mode, line kind) -> (next mode, action)
TRANSITIONS = {
    (Mode.NORMAL, LineKind.LIST_MARKER):        (Mode.IN_LIST,       'open_list'),
    (Mode.NORMAL, LineKind.FENCE):              (Mode.IN_CODE_FENCE, 'open_code'),
    (Mode.NORMAL, LineKind.BLANK):              (Mode.NORMAL,        'skip'),
    (Mode.NORMAL, LineKind.TEXT):               (Mode.NORMAL,        'add_block'),

    (Mode.IN_LIST, LineKind.LIST_MARKER):       (Mode.NORMAL,        'close_list'),
    (Mode.IN_LIST, LineKind.FENCE):             (Mode.IN_LIST,       'add_item'),
    (Mode.IN_LIST, LineKind.BLANK):             (Mode.IN_LIST,       'add_item'),
    (Mode.IN_LIST, LineKind.TEXT):              (Mode.IN_LIST,       'add_item'),

    (Mode.IN_CODE_FENCE, LineKind.LIST_MARKER): (Mode.IN_CODE_FENCE, 'add_code'),
    (Mode.IN_CODE_FENCE, LineKind.FENCE):       (Mode.NORMAL,        'close_code'),
    (Mode.IN_CODE_FENCE, LineKind.BLANK):       (Mode.IN_CODE_FENCE, 'skip'),
    (Mode.IN_CODE_FENCE, LineKind.TEXT):        (Mode.IN_CODE_FENCE, 'add_code'),
}

def classify(line):
    """Classify a line for the block state machine"""
    if line.line == LIST_MARKER:
        return LineKind.LIST_MARKER
    elif line.stripped == '':
        return LineKind.BLANK
    elif line.stripped.startswith(FENCE):
        return LineKind.FENCE
    else:
        return LineKind.TEXT

class Converter(object):
    """Line oriented converter, one instance per document"""

    line_break = LINE_BREAK

    def __init__(self):
        super(Converter, self).__init__()
        self.line_num  = 0
        self.mode      = Mode.NORMAL
        self.buffer    = []    # lines of the open list or code fence
        self.output    = []
        self.formatter = InlineFormatter()
        self.links     = LinkExtractor()
        self.renderer  = HTMLRenderer()

    def emit(self, block):
        """escape the rendered block as one unit and append it to the output"""
        self.output.append(escape_html(self.renderer.render(block)) + self.line_break)

    def parse_line(self, line):
        """Feed one line of the document"""
        self.line_num += 1
        line = Line(line, self.line_num)

        try:
            mode, action = TRANSITIONS[(self.mode, classify(line))]
        except KeyError:
            raise Exception('no transition for line %d in mode %s' % (self.line_num, self.mode))

        getattr(self, action)(line)
        self.mode = mode

    def parse_end(self):
        """Finish the document and return the escaped HTML"""
        if self.mode != Mode.NORMAL:
            logger.debug('document ended %s, %d buffered line(s) discarded',
                    self.mode, len(self.buffer))
            self.buffer = []
        return ''.join(self.output)

    def parse(self, document):
        for line in document.split('\n'):
            self.parse_line(line)
        return self.parse_end()

#------------------------------------------------------------------------------
# Actions

    def skip(self, line):
        pass

    def open_list(self, line):
        self.buffer = []

    def add_item(self, line):
        self.buffer.append(self.formatter.format(line.line))

    def close_list(self, line):
        self.emit(List(self.buffer))
        self.buffer = []

    def open_code(self, line):
        self.buffer = []

    def add_code(self, line):
        self.buffer.append(line.stripped)

    def close_code(self, line):
        self.emit(CodeBlock(self.buffer))
        self.buffer = []

    def add_block(self, line):
        line.formatted = self.formatter.format(line.stripped)
        line.text = self.links.extract(line.formatted)

        block = BlockFactory.matched_block(line)
        if block is None:
            logger.debug('line %d matches no block, dropped: %r', line.line_num, line.stripped)
            return
        self.emit(block)

#==============================================================================
# Public interface

class Conversion(object):
    """The two views of a converted document"""
    def __init__(self, source_view):
        self.source_view = source_view
        self.preview_html = unescape_html(source_view)

    def __repr__(self):
        return 'Conversion(%r)' % self.source_view

def convert(document):
    """Convert a document to its escaped source view and its preview HTML"""
    return Conversion(Converter().parse(document))

def format_inline(line):
    return InlineFormatter().format(line)

def extract_links(line):
    return LinkExtractor().extract(line)

class Preview(object):
    """Holds the views of the last conversion and pushes new ones to the host.

    `on_source` and `on_preview` are called with the new source view and
    preview HTML. Submitting None leaves the current views untouched."""

    def __init__(self, on_source=None, on_preview=None):
        self.on_source    = on_source
        self.on_preview   = on_preview
        self.source_view  = ''
        self.preview_html = ''

    def submit(self, document):
        if document is None:
            logger.debug('nothing submitted, views left unchanged')
            return None

        conversion = convert(document)
        self.source_view = conversion.source_view
        self.preview_html = conversion.preview_html
        if self.on_source is not None:
            self.on_source(conversion.source_view)
        if self.on_preview is not None:
            self.on_preview(conversion.preview_html)
        return conversion

#==============================================================================

def build_arg_parser():
    parser = argparse.ArgumentParser(
            prog='pymdview',
            description='Convert restricted markdown to escaped HTML source or preview HTML')
    parser.add_argument('file', nargs='?', default='-',
            help='markdown file to convert, stdin if omitted or "-"')
    parser.add_argument('-p', '--preview', action='store_true',
            help='print the preview HTML instead of the escaped source view')
    parser.add_argument('-v', '--verbose', action='store_true',
            help='log dropped lines and discarded blocks')
    return parser

def main(argv=None):
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format='%(levelname)s %(name)s: %(message)s')

    if args.file == '-':
        document = sys.stdin.read()
    else:
        try:
            with open(args.file, encoding='utf-8') as fp:
                document = fp.read()
        except OSError as e:
            print('pymdview: cannot read {0}: {1}'.format(args.file, e.strerror), file=sys.stderr)
            return 1

    conversion = convert(document)
    print(conversion.preview_html if args.preview else conversion.source_view)
    return 0

if __name__ == '__main__':
    sys.exit(main())
