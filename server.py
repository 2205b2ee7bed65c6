"""
iSpy - Email read receipts with open detection
Deploy to Render.com (free tier)

Features:
- Send tracked emails over SMTP with an invisible tracking pixel
- Open detection that ignores image proxies, prefetchers and bursts
- Read notifications and dashboard stats
- AI summaries of recent emails (OpenAI, with a rule-based fallback)
"""

import json
import logging
import os
from datetime import datetime, time, timezone

from flask import Flask, Response, jsonify, request

from background import run_after_response
from mailer import MailSendError, SmtpMailer
from storage import Storage, utcnow
from summaries import SummaryGenerator
from tracking import PIXEL_PNG, embed_tracking_pixel, generate_tracking_pixel, process_pixel_fetch

logger = logging.getLogger(__name__)

RECENT_EMAILS_FOR_SUMMARY = 5


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config():
    data_dir = os.environ.get("DATA_DIR", ".")
    return {
        "DATABASE": os.path.join(data_dir, "tracking.db"),
        "PUBLIC_BASE_URL": os.environ.get("PUBLIC_BASE_URL", ""),
        "TRACK_IN_BACKGROUND": _env_bool("TRACK_IN_BACKGROUND", True),
        "SMTP_HOST": os.environ.get("SMTP_HOST", "smtp.gmail.com"),
        "SMTP_PORT": int(os.environ.get("SMTP_PORT", 465)),
        "SMTP_USER": os.environ.get("EMAIL_USER", ""),
        "SMTP_PASSWORD": os.environ.get("EMAIL_PASS", ""),
        "SMTP_SENDER_NAME": os.environ.get("SMTP_SENDER_NAME", "iSpy"),
        "SMTP_USE_SSL": _env_bool("SMTP_USE_SSL", True),
        "OPENAI_API_KEY": os.environ.get("OPENAI_API_KEY", ""),
        "OPENAI_MODEL": os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
        "OPENAI_TIMEOUT": int(os.environ.get("OPENAI_TIMEOUT", 60)),
    }


def _iso(value):
    return value.isoformat() if value else None


def email_json(email):
    return {
        "id": email["id"],
        "recipient": email["recipient"],
        "subject": email["subject"],
        "content": email["content"],
        "sentAt": _iso(email["sent_at"]),
        "trackingPixelId": email["tracking_pixel_id"],
        "readStatus": email["read_status"],
        "readAt": _iso(email["read_at"]),
        "readTime": email["read_time"],
        "openCount": email["open_count"],
    }


def receipt_json(receipt):
    return {
        "id": receipt["id"],
        "emailId": receipt["email_id"],
        "trackingPixelId": receipt["tracking_pixel_id"],
        "ipAddress": receipt["ip_address"],
        "userAgent": receipt["user_agent"],
        "readAt": _iso(receipt["read_at"]),
        "sessionDuration": receipt["session_duration"],
    }


def summary_json(summary):
    return {
        "id": summary["id"],
        "title": summary["title"],
        "content": summary["content"],
        "source": summary["source"],
        "sourceData": summary["source_data"],
        "priority": summary["priority"],
        "keyPoints": summary["key_points"],
        "createdAt": _iso(summary["created_at"]),
    }


def notification_json(notification):
    return {
        "id": notification["id"],
        "type": notification["type"],
        "title": notification["title"],
        "content": notification["content"],
        "isRead": notification["is_read"],
        "createdAt": _iso(notification["created_at"]),
        "data": notification["data"],
    }


def create_app(config=None, storage=None, mailer=None, summarizer=None):
    app = Flask(__name__)
    app.config.update(load_config())
    if config:
        app.config.update(config)

    storage = storage or Storage(app.config["DATABASE"])
    storage.init_db()
    app.extensions["storage"] = storage
    app.extensions["mailer"] = mailer or SmtpMailer(
        app.config["SMTP_HOST"],
        app.config["SMTP_PORT"],
        app.config["SMTP_USER"],
        app.config["SMTP_PASSWORD"],
        sender_name=app.config["SMTP_SENDER_NAME"],
        use_ssl=app.config["SMTP_USE_SSL"],
    )
    app.extensions["summarizer"] = summarizer or SummaryGenerator(
        api_key=app.config["OPENAI_API_KEY"],
        model=app.config["OPENAI_MODEL"],
        timeout=app.config["OPENAI_TIMEOUT"],
    )

    register_routes(app)
    return app


def register_routes(app):
    storage = app.extensions["storage"]

    # ─── TRACKING PIXEL ENDPOINT ──────────────────────────────────────
    @app.route("/api/track/<pixel_id>")
    def track_open(pixel_id):
        response = Response(PIXEL_PNG, status=200, mimetype="image/png")
        response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"

        # HEAD never loads the image, so it is not a fetch
        if request.method == "HEAD":
            return response

        # Classification happens after the pixel is on the wire
        run_after_response(
            response,
            process_pixel_fetch,
            storage,
            pixel_id,
            request.headers.get("X-Forwarded-For", request.remote_addr) or "unknown",
            request.headers.get("User-Agent", ""),
            utcnow(),
            threaded=app.config["TRACK_IN_BACKGROUND"],
        )
        return response

    # ─── API: SEND A TRACKED EMAIL ────────────────────────────────────
    @app.route("/api/emails", methods=["POST"])
    def send_email():
        data = request.get_json(silent=True) or {}
        recipient = (data.get("recipient") or "").strip()
        subject = (data.get("subject") or "").strip()
        content = data.get("content") or ""

        if not recipient or not subject or not content:
            return jsonify({"error": "recipient, subject and content are required"}), 400

        base_url = app.config["PUBLIC_BASE_URL"] or request.host_url
        pixel = generate_tracking_pixel(base_url)
        tracked_content = embed_tracking_pixel(content, pixel.pixel_html)

        try:
            email = storage.create_email(recipient, subject, tracked_content, pixel.pixel_id)
        except Exception:
            logger.exception(f"Error storing email to {recipient}")
            return jsonify({"error": "Failed to store email"}), 500

        try:
            message_id = app.extensions["mailer"].send(recipient, subject, tracked_content)
        except MailSendError as e:
            try:
                storage.mark_send_failed(email["id"])
            except Exception:
                logger.exception(f"Failed to mark email {email['id']} as failed")
            return jsonify({"error": "Failed to send email", "detail": str(e)}), 500

        return jsonify({**email_json(email), "success": True, "messageId": message_id})

    # ─── API: LIST ALL TRACKED EMAILS ─────────────────────────────────
    @app.route("/api/emails")
    def list_emails():
        try:
            emails = storage.list_emails()
        except Exception:
            logger.exception("Error listing emails")
            return jsonify({"error": "Failed to fetch emails"}), 500
        return jsonify([email_json(e) for e in emails])

    # ─── API: GET DETAIL FOR A SPECIFIC EMAIL ─────────────────────────
    @app.route("/api/emails/<email_id>")
    def get_email_detail(email_id):
        try:
            email = storage.get_email(email_id)
            if not email:
                return jsonify({"error": "email not found"}), 404
            receipts = storage.get_read_receipts(email_id)
        except Exception:
            logger.exception(f"Error fetching email {email_id}")
            return jsonify({"error": "Failed to fetch email"}), 500

        return jsonify({**email_json(email), "receipts": [receipt_json(r) for r in receipts]})

    # ─── API: DASHBOARD STATS ─────────────────────────────────────────
    @app.route("/api/stats")
    def stats():
        try:
            emails = storage.list_emails()
            summaries = storage.list_ai_summaries()
        except Exception:
            logger.exception("Error computing stats")
            return jsonify({"error": "Failed to fetch stats"}), 500

        today = datetime.combine(utcnow().date(), time.min, tzinfo=timezone.utc)
        sent_today = [e for e in emails if e["sent_at"] and e["sent_at"] >= today]
        read = [e for e in emails if e["read_status"] == "read"]
        read_rate = round(len(read) / len(emails) * 100) if emails else 0
        avg_read_time = sum(e["read_time"] or 0 for e in read) / len(read) if read else 0

        return jsonify({
            "sentToday": len(sent_today),
            "emailsRead": len(read),
            "readRate": f"{read_rate}%",
            "aiSummaries": len(summaries),
            "avgReadTime": f"{int(avg_read_time // 60)}m",
        })

    # ─── API: AI SUMMARIES ────────────────────────────────────────────
    @app.route("/api/summaries")
    def list_summaries():
        try:
            summaries = storage.list_ai_summaries()
        except Exception:
            logger.exception("Error listing summaries")
            return jsonify({"error": "Failed to fetch summaries"}), 500
        return jsonify([summary_json(s) for s in summaries])

    @app.route("/api/summaries/generate", methods=["POST"])
    def generate_summary():
        try:
            recent = storage.list_emails()[:RECENT_EMAILS_FOR_SUMMARY]
            if not recent:
                return jsonify({"error": "No emails to summarize"}), 400

            emails_for_summary = [{
                "subject": e["subject"],
                "content": e["content"],
                "sender": e["recipient"],
                "timestamp": _iso(e["sent_at"] or utcnow()),
            } for e in recent]

            result = app.extensions["summarizer"].generate(emails_for_summary)
            summary = storage.create_ai_summary(
                title=result["title"],
                content=result["content"],
                source="email",
                source_data=json.dumps(emails_for_summary),
                priority=result["priority"],
                key_points=result["keyPoints"],
            )
            storage.create_notification(
                "ai_summary",
                "New AI Summary Available",
                f"Generated summary: {result['title']}",
                data={"summaryId": summary["id"]},
            )
        except Exception:
            logger.exception("Error generating summary")
            return jsonify({"error": "Failed to generate AI summary"}), 500

        return jsonify(summary_json(summary))

    # ─── API: NOTIFICATIONS ───────────────────────────────────────────
    @app.route("/api/notifications")
    def list_notifications():
        try:
            notifications = storage.list_notifications()
        except Exception:
            logger.exception("Error listing notifications")
            return jsonify({"error": "Failed to fetch notifications"}), 500
        return jsonify([notification_json(n) for n in notifications])

    @app.route("/api/notifications/<notification_id>/read", methods=["PUT"])
    def mark_notification_read(notification_id):
        try:
            updated = storage.mark_notification_read(notification_id)
        except Exception:
            logger.exception(f"Error updating notification {notification_id}")
            return jsonify({"error": "Failed to mark notification as read"}), 500
        if not updated:
            return jsonify({"error": "notification not found"}), 404
        return jsonify({"success": True})


if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=False)
