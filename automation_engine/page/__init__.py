"""
页面通道 - 引擎与浏览器页面之间的协作层
"""
from .base import RESTRICTED_URL_PREFIXES, PageChannel, check_restricted_url, is_restricted_url

__all__ = [
    "PageChannel",
    "RESTRICTED_URL_PREFIXES",
    "check_restricted_url",
    "is_restricted_url",
]
