"""
Notification Dispatcher - credentials email and owner Telegram alert after provisioning
Sends are detached from the request path: failures are logged and never escalate
"""

import asyncio
import html
import logging
import smtplib
from email.message import EmailMessage
from datetime import datetime
from typing import Optional, Set

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

from config import EmailConfig, TelegramConfig
from models.payment_models import Transaction, PanelDetails
from pricing_utils import format_rupiah
from utils.timezone_utils import format_local, utc_now

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING = 100

_PANEL_EMAIL_TEMPLATE = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; border: 1px solid #e0e0e0; border-radius: 5px;">
  <div style="background: linear-gradient(to right, #e53e3e, #c53030); padding: 15px; border-radius: 5px 5px 0 0;">
    <h2 style="color: white; margin: 0; text-align: center;">{app_name} - Detail Panel Pterodactyl</h2>
  </div>
  <div style="padding: 20px; background-color: #f8f9fa;">
    <p>Halo,</p>
    <p>Terima kasih telah membeli panel Pterodactyl di {app_name}. Berikut adalah detail akun panel Anda:</p>
    <div style="background-color: #ffffff; border: 1px solid #e0e0e0; border-radius: 5px; padding: 15px; margin: 20px 0;">
      <p><strong>Paket:</strong> {plan_name}</p>
      <p><strong>Username:</strong> {username}</p>
      <p><strong>Password:</strong> <code>{password}</code></p>
      <p><strong>Server ID:</strong> {server_id}</p>
      <p><strong>URL Panel:</strong> <a href="{panel_url}">{panel_url}</a></p>
    </div>
    <p>Silakan login ke panel dengan kredensial di atas. Jika membutuhkan bantuan, hubungi tim dukungan kami.</p>
    {community_block}
    <p>Salam,<br>Tim {app_name}</p>
  </div>
  <div style="background-color: #2d3748; color: white; text-align: center; padding: 10px; border-radius: 0 0 5px 5px;">
    <p style="margin: 0;">&copy; {year} {app_name}. All rights reserved.</p>
  </div>
</div>
"""


def mask_email_for_alert(email: str) -> str:
    """Keep half of the local part (at least what is there when it is 3 chars or less)"""
    if "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    if len(local) <= 3:
        return f"{local}***@{domain}"
    visible = local[:(len(local) + 1) // 2]
    return f"{visible}***@{domain}"


class EmailSender:
    """SMTP sender for panel credentials (HTML body)"""

    def __init__(self, config: EmailConfig, app_name: str, community_link: str = ""):
        self.config = config
        self.app_name = app_name
        self.community_link = community_link

    def is_available(self) -> bool:
        return self.config.is_configured()

    def render_panel_details(self, username: str, password: str, server_id: int,
                             plan_name: str, panel_url: str) -> str:
        community_block = ""
        if self.community_link:
            community_block = (
                '<p>Gabung grup WhatsApp kami untuk info terbaru dan dukungan: '
                f'<a href="{html.escape(self.community_link)}">Gabung Grup WhatsApp</a></p>'
            )
        return _PANEL_EMAIL_TEMPLATE.format(
            app_name=html.escape(self.app_name),
            plan_name=html.escape(plan_name),
            username=html.escape(username),
            password=html.escape(password),
            server_id=server_id,
            panel_url=html.escape(panel_url),
            community_block=community_block,
            year=utc_now().year,
        )

    def _deliver(self, message: EmailMessage):
        if self.config.port == 465:
            with smtplib.SMTP_SSL(self.config.host, self.config.port, timeout=30) as smtp:
                smtp.login(self.config.user, self.config.password)
                smtp.send_message(message)
            return
        with smtplib.SMTP(self.config.host, self.config.port, timeout=30) as smtp:
            if self.config.use_tls:
                smtp.starttls()
            smtp.login(self.config.user, self.config.password)
            smtp.send_message(message)

    async def send_panel_details(self, to: str, username: str, password: str, server_id: int,
                                 plan_name: str, panel_url: str) -> bool:
        if not self.is_available():
            logger.warning(f"⚠️ EMAIL: SMTP not configured - credentials email to {to} skipped")
            return False

        message = EmailMessage()
        message["Subject"] = f"Detail Akun Panel Pterodactyl {self.app_name}"
        message["From"] = self.config.sender
        message["To"] = to
        message.set_content(
            f"Paket: {plan_name}\nUsername: {username}\nPassword: {password}\n"
            f"Server ID: {server_id}\nURL Panel: {panel_url}\n"
        )
        message.add_alternative(
            self.render_panel_details(username, password, server_id, plan_name, panel_url),
            subtype="html",
        )

        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"❌ EMAIL: Failed to send panel details to {to}: {e}")
            return False

        logger.info(f"📧 EMAIL: Panel details sent to {to}")
        return True


class TelegramNotifier:
    """Owner alert through the Telegram Bot API"""

    def __init__(self, config: TelegramConfig, bot: Optional[Bot] = None):
        self.config = config
        self._bot = bot

    def is_available(self) -> bool:
        return self.config.is_configured()

    def _get_bot(self) -> Bot:
        if self._bot is None:
            self._bot = Bot(token=self.config.bot_token)
        return self._bot

    @staticmethod
    def format_new_panel(user_id: int, invoice_date: datetime, price: int, plan_name: str, email: str) -> str:
        return (
            "🔔 <b>New Panel Created</b>\n\n"
            f"👤 User ID: <code>{user_id}</code>\n"
            f"📅 Invoice Date: {format_local(invoice_date)}\n"
            f"💰 Price: {format_rupiah(price)}\n"
            f"📦 Plan: {html.escape(plan_name)}\n"
            f"📧 Email: {html.escape(mask_email_for_alert(email))}"
        )

    async def send_new_panel(self, user_id: int, invoice_date: datetime, price: int,
                             plan_name: str, email: str) -> bool:
        if not self.is_available():
            logger.warning("⚠️ TELEGRAM: Bot token or owner id not configured - alert skipped")
            return False

        text = self.format_new_panel(user_id, invoice_date, price, plan_name, email)
        try:
            await self._get_bot().send_message(
                chat_id=self.config.owner_id,
                text=text,
                parse_mode=ParseMode.HTML,
            )
        except TelegramError as e:
            logger.error(f"❌ TELEGRAM: Failed to send owner alert: {e}")
            return False

        logger.info(f"📣 TELEGRAM: Owner alerted for panel user {user_id}")
        return True


class NotificationDispatcher:
    """
    Fire-and-forget fan-out after a completed provisioning.

    Each dispatch runs as a detached asyncio task held in a bounded set; when
    the set is full the dispatch is dropped and logged rather than queued, so
    a slow SMTP server can never back up the reconcile path.
    """

    def __init__(self, email: EmailSender, telegram: TelegramNotifier,
                 max_pending: int = DEFAULT_MAX_PENDING):
        self.email = email
        self.telegram = telegram
        self.max_pending = max_pending
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def dispatch_completion(self, transaction: Transaction, plan_name: str,
                            panel_details: PanelDetails) -> bool:
        """Schedule both notifications without awaiting them; returns whether they were scheduled"""
        if len(self._tasks) >= self.max_pending:
            logger.error(f"🚨 NOTIFY: {len(self._tasks)} notifications in flight - dropping "
                         f"notifications for {transaction.transaction_id}")
            return False

        task = asyncio.create_task(self._send_all(transaction, plan_name, panel_details))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _send_all(self, transaction: Transaction, plan_name: str, panel_details: PanelDetails):
        tid = transaction.transaction_id
        results = await asyncio.gather(
            self.email.send_panel_details(
                to=transaction.email,
                username=panel_details.username,
                password=panel_details.password,
                server_id=panel_details.server_id,
                plan_name=plan_name,
                panel_url=panel_details.panel_url,
            ),
            self.telegram.send_new_panel(
                user_id=panel_details.user_id if panel_details.user_id is not None else panel_details.server_id,
                invoice_date=transaction.created_at,
                price=transaction.total,
                plan_name=plan_name,
                email=transaction.email,
            ),
            return_exceptions=True,
        )
        for channel, result in zip(("email", "telegram"), results):
            if isinstance(result, BaseException):
                logger.error(f"❌ NOTIFY {tid}: {channel} notification raised {result!r}")
            elif not result:
                logger.warning(f"⚠️ NOTIFY {tid}: {channel} notification not delivered")

    async def drain(self):
        """Wait for in-flight notifications (used on shutdown)"""
        if self._tasks:
            logger.info(f"⏳ NOTIFY: Waiting for {len(self._tasks)} in-flight notifications")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
