"""Inbound event classification."""

from feishu_channel.inbound.classifier import ClassifiedEvent, ParsedContent, classify_event, parse_content

__all__ = ["ClassifiedEvent", "ParsedContent", "classify_event", "parse_content"]
