"""统一异常体系

所有业务异常继承 LayerBuildError，每类异常带一个稳定的 code，
CLI 层据此映射退出码并输出一行诊断信息。

解析期错误（源码固定不匹配、必需依赖缺失、描述错误）在任何构建子进程
启动之前抛出；检查阶段失败以结构化结果返回，见 CheckPhaseFailure。
"""

from __future__ import annotations


class LayerBuildError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(LayerBuildError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(LayerBuildError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class DescriptorError(LayerBuildError):
    """包描述无法组合（未知包、叠加层异常、惰性引用成环等）"""

    code = "DESCRIPTOR_ERROR"


class OverlayConflictError(DescriptorError):
    """严格模式下，叠加层覆盖了先前叠加层写入的字段"""

    code = "OVERLAY_CONFLICT"

    def __init__(self, field_name: str, overlay: str, shadowed: str) -> None:
        super().__init__(
            f"叠加层 '{overlay}' 覆盖了 '{shadowed}' 写入的字段 '{field_name}'"
        )
        self.field_name = field_name
        self.overlay = overlay
        self.shadowed = shadowed


class SourcePinMismatch(LayerBuildError):
    """拉取到的源码摘要与固定哈希不一致"""

    code = "SOURCE_PIN_MISMATCH"

    def __init__(self, source_ref: str, expected: str, actual: str) -> None:
        super().__init__(
            f"源码哈希不匹配 {source_ref}: 期望 {expected}, 实际 {actual}"
        )
        self.source_ref = source_ref
        self.expected = expected
        self.actual = actual


class FetchError(LayerBuildError):
    """源码拉取失败（网络、git、本地路径不存在）"""

    code = "FETCH_ERROR"


class MissingDependency(LayerBuildError):
    """必需依赖在目标平台上无法解析"""

    code = "MISSING_DEPENDENCY"

    def __init__(self, name: str, platform: str = "", reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        where = f" (平台 {platform})" if platform else ""
        super().__init__(f"缺少必需依赖 '{name}'{where}{detail}")
        self.name = name
        self.platform = platform
        self.reason = reason


class ExecutionError(LayerBuildError):
    """子进程执行失败"""

    code = "EXECUTION_ERROR"

    def __init__(self, message: str, returncode: int = 1, output: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class CheckPhaseFailure(LayerBuildError):
    """检查阶段失败，由 PipelineReport.raise_for_status() 抛出"""

    code = "CHECK_PHASE_FAILURE"

    def __init__(self, phase: str, returncode: int, output: str = "") -> None:
        super().__init__(f"检查阶段 '{phase}' 失败 (rc={returncode})")
        self.phase = phase
        self.returncode = returncode
        self.output = output
