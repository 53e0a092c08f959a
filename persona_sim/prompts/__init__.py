
from .customer import build_customer_system_prompt
from .json_loader import deep_merge, load_json_overrides, load_prompt_json

__all__ = ["build_customer_system_prompt", "deep_merge", "load_json_overrides", "load_prompt_json"]
