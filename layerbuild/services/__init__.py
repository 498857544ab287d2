"""服务层：描述加载、构建环境、构建编排"""
