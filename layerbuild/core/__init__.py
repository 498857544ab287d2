"""核心层：描述模型、叠加层组合、依赖解析、源码固定校验、检查流水线"""
