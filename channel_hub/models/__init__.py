from channel_hub.models.base import Base  # noqa: F401

from channel_hub.models.marketplace_account import MarketplaceAccount  # noqa: F401
from channel_hub.models.channel_field_definition import ChannelFieldDefinition  # noqa: F401
from channel_hub.models.channel_value_list import ChannelValueList  # noqa: F401
