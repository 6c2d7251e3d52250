"""
Form Automation

Queue-driven web form filling: a single-flight task scheduler, a Playwright
automation worker, and a dashboard API for enqueueing tasks and supplying
files to paused upload fields.
"""

__version__ = "1.0.0"
