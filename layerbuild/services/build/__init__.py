"""构建执行

- executor.py: 源码复制、构建命令、产物收集
"""

from layerbuild.services.build.executor import BuildExecutor, BuildStepResult

__all__ = ["BuildExecutor", "BuildStepResult"]
