"""
Analysis services, leaves first:

1. prompts.py - system instruction, per-URL prompt, Gemini output schema
2. normalizer.py - fence stripping, JSON parsing, coercion into AnalysisResultData
3. providers.py - one adapter per provider family (Gemini, OpenAI-compatible, Claude)
4. retry.py - bounded retry with exponential backoff and error classification
5. aggregator.py - ordered outcomes + progress counter, broadcast to SSE subscribers
6. scheduler.py - concurrent lanes pulling from one task queue, round-robin over workers
7. run_manager.py - in-memory registry that starts, tracks and cancels runs
"""
