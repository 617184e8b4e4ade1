"""Slack-to-NotebookLM relay worker.

Queued questions are answered by driving the notebook's chat UI in a
headless browser, one long-lived page per Slack thread.
"""
