"""
DailySmarty 文章 API：读取静态 db.json，提供 /api/posts 与 /api/posts/<id>。
宿主挂载时 options.start_listening 为 False，只注册路由；单独运行本文件时自起 Flask 监听。
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List

from flask import Blueprint, Flask, jsonify, request

logger = logging.getLogger("develrun.posts")

DB_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "dailysmarty", "db.json")


def load_posts(db_path: str) -> List[Dict[str, Any]]:
    try:
        with open(db_path, "r", encoding="utf-8") as f:
            return json.load(f).get("posts") or []
    except (OSError, ValueError) as e:
        logger.error("error loading %s: %s", db_path, e)
        return []


class PostsAPI:
    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        self.posts = load_posts(db_path)
        self.requests = 0
        logger.info("initialised with %d posts", len(self.posts))

    def blueprint(self, name: str) -> Blueprint:
        bp = Blueprint(name, __name__)

        @bp.route("/api/posts", methods=["GET"])
        def list_posts():
            self.requests += 1
            title_like = (request.args.get("title_like") or "").lower()
            results = self.posts
            if title_like:
                results = [p for p in self.posts if title_like in (p.get("title") or "").lower()]
            return jsonify(results), 200

        @bp.route("/api/posts/<int:post_id>", methods=["GET"])
        def get_post(post_id: int):
            self.requests += 1
            post = next((p for p in self.posts if p.get("id") == post_id), None)
            if post is None:
                return jsonify({"code": "NOT_FOUND", "message": "Post not found", "details": "", "requestId": ""}), 404
            return jsonify(post), 200

        return bp

    def get_stats(self) -> Dict[str, Any]:
        return {
            "totalPosts": len(self.posts),
            "requests": self.requests,
            "endpoints": ["/api/posts", "/api/posts/<id>"],
        }

    def cleanup(self) -> None:
        self.posts = []
        logger.info("posts cache released")


def setup_posts(app, server, options=None):
    """宿主入口：在共享 app 上注册路由，返回带 get_stats/cleanup 的实例。"""
    name = getattr(options, "name", "") or "develrun"
    api = PostsAPI()
    app.register_blueprint(api.blueprint(f"posts_{name}".replace(".", "_")))
    logger.info("posts API mounted for %s", name)
    if getattr(options, "start_listening", True):
        app.run(host="0.0.0.0", port=int(os.environ.get("PORT", "3002")))
    return api


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    setup_posts(Flask(__name__), None)
