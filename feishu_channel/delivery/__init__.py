"""Reply delivery: cards, batch chunking, streaming edits, outbound sends."""

from feishu_channel.delivery.cards import STREAMING_CURSOR, render_card
from feishu_channel.delivery.engine import FEISHU_CARD_CONTENT_LIMIT, ReplyDeliveryEngine
from feishu_channel.delivery.outbound import DownloadResult, FeishuSender, SendResult, UploadResult
from feishu_channel.delivery.streaming import STREAMING_UPDATE_INTERVAL_SECONDS, StreamingContext, StreamingReply
from feishu_channel.delivery.targets import DeliveryTarget, infer_receive_id_type, normalize_target

__all__ = [
    "DeliveryTarget",
    "DownloadResult",
    "FEISHU_CARD_CONTENT_LIMIT",
    "FeishuSender",
    "ReplyDeliveryEngine",
    "STREAMING_CURSOR",
    "STREAMING_UPDATE_INTERVAL_SECONDS",
    "SendResult",
    "StreamingContext",
    "StreamingReply",
    "UploadResult",
    "infer_receive_id_type",
    "normalize_target",
    "render_card",
]
