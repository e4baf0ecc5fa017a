"""
Web Application - Nenua Study Buddy

使用 Flask 为前端提供 JSON API（页面渲染由前端负责）
"""
import os
from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_cors import CORS

from nenua.common import Logger
from nenua.ai import (
    AIConfig,
    AIService,
    ConfigurationError,
    GatewayError,
    create_ai_service,
    create_chat_session,
    default_history,
    describe_error,
    is_capacity_exhausted,
)


api = Blueprint("api", __name__)

EXTENSION_KEY = "nenua_ai"


def create_app(service: Optional[AIService] = None, config: Optional[AIConfig] = None) -> Flask:
    """创建 Flask 应用

    未配置 API Key 时应用照常启动：/api/status 返回 api_key_missing，
    AI 接口返回 503

    Args:
        service: AI 服务（测试时注入）
        config: AI 配置（None 时从环境变量读取）

    Returns:
        Flask 应用
    """
    app = Flask(__name__)
    CORS(app)

    config = config or (service.config if service else AIConfig.from_env())
    logger = Logger(config.log_dir)

    if service is None:
        try:
            service = create_ai_service(config)
        except ConfigurationError as e:
            logger.log("web", "warning", f"AI 服务未启用: {e}")

    app.extensions[EXTENSION_KEY] = service
    app.register_blueprint(api)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            "success": False,
            "message": "接口不存在"
        }), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({
            "success": False,
            "message": "服务器内部错误"
        }), 500

    return app


def _get_service() -> AIService:
    service = current_app.extensions.get(EXTENSION_KEY)
    if service is None:
        raise ConfigurationError("Gemini API key not configured")
    return service


def _bad_request(message: str):
    return jsonify({
        "success": False,
        "message": message
    }), 400


def _error_response(error: GatewayError, fallback: str):
    """网关错误 → HTTP 响应"""
    if isinstance(error, ConfigurationError):
        status = 503
    elif is_capacity_exhausted(error):
        status = 429
    else:
        status = 502

    return jsonify({
        "success": False,
        "message": describe_error(error, fallback)
    }), status


def _ok(data):
    return jsonify({
        "success": True,
        "data": data
    })


def _text_field(name: str) -> str:
    data = request.get_json(silent=True) or {}
    value = data.get(name, "")
    return value.strip() if isinstance(value, str) else ""


# ==================== API 接口 ====================

@api.route('/api/status', methods=['GET'])
def get_status():
    """获取服务状态（api_key_missing 用于前端提示横幅）"""
    service = current_app.extensions.get(EXTENSION_KEY)
    status = service.get_status() if service else {}

    return _ok({
        "api_key_missing": service is None,
        **status
    })


@api.route('/api/chat', methods=['POST'])
async def chat():
    """发送聊天消息

    Body: JSON 格式
    {
        "history": [{"role": "model", "text": "..."}, ...],  # 可选，缺省为问候语
        "message": "帮我做个复习计划"
    }
    """
    data = request.get_json(silent=True) or {}
    message = data.get("message", "")
    if not isinstance(message, str) or not message.strip():
        return _bad_request("消息不能为空")

    history = data.get("history")
    if history is None:
        history = default_history()
    if not isinstance(history, list):
        return _bad_request("history 必须是数组")

    try:
        session = create_chat_session(history)
    except ValueError as e:
        return _bad_request(f"history 格式错误: {e}")

    try:
        reply, session = await _get_service().send_message(session, message.strip())
    except GatewayError as e:
        return _error_response(e, "Connection error.")

    return _ok({
        "reply": reply,
        "history": session.to_list()
    })


@api.route('/api/notes', methods=['POST'])
async def notes():
    """生成康奈尔笔记

    Body: {"content": "学习材料"}
    """
    source = _text_field("content")
    if not source:
        return _bad_request("内容不能为空")

    try:
        note = await _get_service().generate_cornell_notes(source)
    except GatewayError as e:
        return _error_response(e, "Note synthesis failed.")

    return _ok(note.to_dict())


@api.route('/api/weather', methods=['POST'])
async def weather():
    """天气与出行提醒

    Body: {"location": "New York"}（可选，可为 "纬度, 经度"）
    """
    try:
        info = await _get_service().fetch_weather_prep(_text_field("location"))
    except GatewayError as e:
        return _error_response(e, "Failed to sync atmospheric data.")

    return _ok(info.to_dict())


@api.route('/api/vision', methods=['POST'])
async def vision():
    """解释摄像头画面

    Body: {"image": "data:image/jpeg;base64,..."}
    """
    image = _text_field("image")
    if not image.startswith("data:"):
        return _bad_request("image 必须是 base64 data URL")

    try:
        analysis = await _get_service().analyze_camera_frame(image)
    except ValueError as e:
        return _bad_request(str(e))
    except GatewayError as e:
        return _error_response(e, "Lens analysis failed.")

    return _ok(analysis.to_dict())


@api.route('/api/wellness', methods=['POST'])
async def wellness():
    """健康建议

    Body: {"symptoms": "I feel exhausted and my back hurts"}
    """
    symptoms = _text_field("symptoms")
    if not symptoms:
        return _bad_request("症状描述不能为空")

    try:
        advice = await _get_service().get_health_advice(symptoms)
    except GatewayError as e:
        return _error_response(e, "Wellness check failed.")

    return _ok(advice.to_dict())


# ==================== 启动命令 ====================

if __name__ == '__main__':
    app = create_app()

    # 启动 Flask 应用
    app.run(host=os.getenv("NENUA_WEB_HOST", "0.0.0.0"),
            port=int(os.getenv("NENUA_WEB_PORT", "5000")),
            debug=True)
