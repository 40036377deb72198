"""业务包注册中心：主应用通过 ``APP_ACTIVE_PACKAGE`` 选择要挂载的业务包。"""

from __future__ import annotations

import os
from typing import Dict

from . import wiki
from .types import AppPackage

DEFAULT_PACKAGE = wiki.package.name

PACKAGE_REGISTRY: Dict[str, AppPackage] = {package.name: package for package in (wiki.package,)}


def get_active_package() -> AppPackage:
    package_name = os.getenv("APP_ACTIVE_PACKAGE") or DEFAULT_PACKAGE
    package = PACKAGE_REGISTRY.get(package_name)
    if package is None:
        raise RuntimeError(f"未找到名为 '{package_name}' 的业务包，可用选项：{', '.join(PACKAGE_REGISTRY)}")
    return package


__all__ = ["wiki", "PACKAGE_REGISTRY", "DEFAULT_PACKAGE", "get_active_package"]
