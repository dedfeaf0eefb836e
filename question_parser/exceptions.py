"""
Exceptions
==========
Error taxonomy for the extraction pipeline.

Only ParsingError and FormatError ever leave a ParserEngine call. The other
classes are raised inside a component and turned into ``errors[]`` entries
by whoever catches them.
"""


class QuestionParserError(RuntimeError):
    """Base class for all parser errors."""


class ParsingError(QuestionParserError):
    """The source could not be read at all."""


class FormatError(QuestionParserError):
    """No pipeline exists for the declared input format."""


class ContentError(QuestionParserError):
    """A block, area or fragment produced empty or too-short content."""


class RecognitionError(QuestionParserError):
    """The OCR service failed for one image or crop."""


class CorrectionError(QuestionParserError):
    """The LLM service failed or returned an unusable response."""
