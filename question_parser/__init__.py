"""
Exam Question Parser
====================
Extraction pipeline that turns exam documents into structured,
confidence-scored question records.

Architecture:
    - Page Segmenter: Splits extracted text into logical pages
    - Area Mapper: Maps canvas regions onto page text
    - Boundary Detector: Groups paragraphs/lines into question blocks
    - Type Classifier: Labels blocks as choice / fill / solution
    - Content Extractor: Pulls options, answers and analyses out of blocks
    - Sub-question Parser: Recovers nested LaTeX sub-items
    - OCR Group Merger: Re-assembles fragments split by the recognizer
    - Parser Engine: Per-format orchestration into a ParseResult

Version: 1.0.0
"""

__version__ = "1.0.0"
