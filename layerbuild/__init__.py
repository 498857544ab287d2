"""layerbuild - 声明式包构建与依赖组合引擎

基础描述 + 平台叠加层 → 固定源码校验 → 依赖解析 → 构建 → 检查流水线。
"""

__version__ = "0.3.0"
