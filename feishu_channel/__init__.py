"""feishu-channel - Feishu/Lark bot bridge for agent gateways."""

__version__ = "0.1.0"
__logo__ = "🪶"
