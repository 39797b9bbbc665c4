"""
Hard Subtitle Extractor — Pipeline Package

Sampling → batching → reconciliation pipeline for burned-in subtitles:
  - frame_source: Region geometry and FFmpeg seek-then-capture frame access
  - sampler: Fixed-step frame sampling over a time window
  - recognizer: Vision recognition service client (Gemini)
  - dispatcher: Ordered batch submission and candidate accumulation
  - reconciler: Sorting and coalescing of duplicate detections
  - state: Run stage / progress / status tracking
  - srt_writer: SRT and plain-text output
  - orchestrator: End-to-end run coordination
"""
