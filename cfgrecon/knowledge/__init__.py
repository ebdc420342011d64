from .frontier import FrontierReason, ReasonKind
from .global_data import GlobalDataInfo, JumpTable, ReferencedValue
from .block_region import BlockRegion
from .discovery_info import DiscoveryInfo
