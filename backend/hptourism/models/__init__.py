from hptourism.models.application import HomestayApplication
from hptourism.models.ddo_code import DDOCode
from hptourism.models.system_setting import SystemSetting
from hptourism.models.transaction import HimKoshTransaction

__all__ = ["HomestayApplication", "DDOCode", "SystemSetting", "HimKoshTransaction"]
