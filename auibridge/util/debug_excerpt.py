"""
调试用原文摘要：记录请求消息或无法解析的上游行时统一截断，只展示重要部分。
仅在 AUIBRIDGE_LOG_LEVEL=debug 时由调用方打 DEBUG 日志。
"""

from __future__ import annotations

import logging

from auibridge.util.logger import logger

DEFAULT_EXCERPT_MAX_LEN = 500


def excerpt_for_debug(text: str, max_len: int = DEFAULT_EXCERPT_MAX_LEN) -> str:
    if not text:
        return ""
    s = str(text).strip()
    if len(s) <= max_len:
        return s
    return f"{s[:max_len]} ... [truncated, total {len(s)} chars]"


def debug_log_original(
    label: str,
    original_text: str,
    *,
    reason: str | None = None,
    max_len: int = DEFAULT_EXCERPT_MAX_LEN,
) -> None:
    """
    仅当 DEBUG 开启时，打一条原文摘要日志。
    label: 如 "request_last_user_message", "upstream_line_unparsed"
    """
    if not logger.isEnabledFor(logging.DEBUG):
        return
    excerpt = excerpt_for_debug(original_text, max_len=max_len)
    if reason:
        logger.debug("%s excerpt reason=%s text=%s", label, reason, excerpt)
    else:
        logger.debug("%s excerpt text=%s", label, excerpt)
