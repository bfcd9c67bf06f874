"""
Medical speech coach built with FastAPI, exposing
- an index.html UI,
- a video upload endpoint,
- an analysis endpoint that forwards the video to the Coze chat API
and turns its streamed answer into a structured critique,
- and a PDF export of that critique.
"""

__version__ = "0.1.0"
