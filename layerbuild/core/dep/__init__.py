"""依赖集合解析

- models.py: DependencySpec / ResolvedDependency
- probe.py: 可用性探测器
- resolver.py: 平台过滤、去重、解析
"""

from layerbuild.core.dep.models import DependencyKind, DependencySpec, ResolvedDependency
from layerbuild.core.dep.probe import (
    ChainProbe,
    DependencyProbe,
    ExecutableProbe,
    PkgConfigProbe,
    StaticProbe,
    default_probe,
)
from layerbuild.core.dep.resolver import DependencyResolver, filter_for_platform

__all__ = [
    "DependencyKind",
    "DependencySpec",
    "ResolvedDependency",
    "DependencyProbe",
    "StaticProbe",
    "ExecutableProbe",
    "PkgConfigProbe",
    "ChainProbe",
    "default_probe",
    "DependencyResolver",
    "filter_for_platform",
]
