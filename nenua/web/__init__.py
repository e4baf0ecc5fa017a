"""
Web 模块 - 前端调用的 JSON API

运行：python -m nenua.web.app
"""

from .app import create_app

__all__ = ['create_app']
