# -*- coding: utf-8 -*-

from .pymdview import (
        Conversion,
        Converter,
        FormatRule,
        FORMAT_RULES,
        HTMLRenderer,
        InlineFormatter,
        LinkExtractor,
        Preview,
        convert,
        escape_html,
        extract_links,
        format_inline,
        main,
        unescape_html,
        )
