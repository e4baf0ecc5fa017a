"""
Nenua Study Buddy

模块：
- ai: Gemini 网关（聊天、笔记、天气、视觉、健康建议）
- web: 给前端调用的 JSON API
"""
