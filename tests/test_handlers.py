from dataclasses import replace
from types import SimpleNamespace

import pytest
from telegram.error import BadRequest, NetworkError

from buytracker.errors import PermissionDeniedError
from buytracker.handlers.commands import (
    HandlerContext,
    format_status,
    help_command,
    sample_event,
    sample_notification,
    status_command,
    stop_command,
    unknown_callback,
)
from buytracker.handlers.setup import (
    parse_callback,
    setup_command,
    text_handler,
)
from buytracker.models import GroupConfig, TokenRef
from buytracker.setup.machine import (
    Cancel,
    CustomEmojiRequested,
    EmojiPresetChosen,
    NetworkChosen,
    PromptKind,
    Reply,
    SkipImage,
    TryAgain,
)

GROUP = -100


class DummyMessage:
    def __init__(self, text: str = "") -> None:
        self.text = text
        self.photo = []
        self.calls = []

    async def reply_text(self, text: str, **kwargs) -> None:
        self.calls.append((text, kwargs))


class FailingMessage(DummyMessage):
    def __init__(self) -> None:
        super().__init__()
        self.failed_once = False

    async def reply_text(self, text: str, **kwargs) -> None:
        if not self.failed_once and kwargs.get("parse_mode") == "MarkdownV2":
            self.failed_once = True
            raise BadRequest("invalid markdown")
        await super().reply_text(text, **kwargs)


class OfflineMessage(DummyMessage):
    async def reply_text(self, text: str, **kwargs) -> None:
        raise NetworkError("connection reset")


class DummyQuery:
    def __init__(self, data: str) -> None:
        self.data = data
        self.answered = False

    async def answer(self) -> None:
        self.answered = True


class DummyStore:
    def __init__(self, config=None) -> None:
        self.config = config
        self.upserts = 0

    async def get(self, group_id):
        return self.config

    async def upsert(self, group_id, mutator):
        self.upserts += 1
        self.config = mutator(self.config or GroupConfig(group_id=group_id))
        return self.config


class DummySubscriptions:
    def __init__(self, alive: bool = True) -> None:
        self.alive = alive
        self.stopped = []

    def get(self, group_id):
        return SimpleNamespace(alive=self.alive)

    async def shutdown(self, group_id) -> bool:
        self.stopped.append(group_id)
        return True


class DummyGateway:
    def __init__(self, admins=()) -> None:
        self.admins = set(admins)

    async def bot_is_admin(self, chat_id) -> bool:
        return True

    async def is_chat_admin(self, chat_id, user_id) -> bool:
        return user_id in self.admins


class DummyCoordinator:
    def __init__(self, replies=None, error=None, session: bool = True) -> None:
        self.replies = replies or []
        self.error = error
        self.session = session
        self.events = []

    async def begin(self, group_id, chat_type, operator_id):
        if self.error:
            raise self.error
        return self.replies

    def has_session(self, group_id) -> bool:
        return self.session

    async def handle(self, group_id, user_id, event):
        self.events.append((group_id, user_id, event))
        return self.replies


class DummyNotifier:
    def __init__(self) -> None:
        self.samples = []

    async def send_sample(self, event, config) -> bool:
        self.samples.append((event, config))
        return True


def tracking_config(**overrides) -> GroupConfig:
    values = dict(
        group_id=GROUP,
        network="bnb",
        token=TokenRef(address="0xtokena", name="Token A", symbol="TKA", decimal_places=18),
        admins=frozenset({7}),
    )
    values.update(overrides)
    return GroupConfig(**values)


def make_context(**parts):
    ctx = HandlerContext(
        store=parts.get("store", DummyStore()),
        subscriptions=parts.get("subscriptions", DummySubscriptions()),
        coordinator=parts.get("coordinator", DummyCoordinator()),
        notifier=parts.get("notifier", DummyNotifier()),
        gateway=parts.get("gateway", DummyGateway()),
        routers={"pancakeswap_v2": {"bnb": "0x10ED43C718714eb63d5aA57B78B54704E256024E"}},
    )
    return SimpleNamespace(application=SimpleNamespace(bot_data={"ctx": ctx}))


def make_update(message=None, user_id: int = 7, chat_type: str = "supergroup", query=None):
    return SimpleNamespace(
        effective_message=message or DummyMessage(),
        effective_user=SimpleNamespace(id=user_id),
        effective_chat=SimpleNamespace(id=GROUP, type=chat_type),
        callback_query=query,
    )


def test_parse_callback() -> None:
    assert parse_callback("setup:network:bnb") == NetworkChosen("bnb")
    assert parse_callback("setup:emoji:set3") == EmojiPresetChosen("set3")
    assert parse_callback("setup:emoji_custom") == CustomEmojiRequested()
    assert parse_callback("setup:skip_image") == SkipImage()
    assert parse_callback("setup:try_again") == TryAgain()
    assert parse_callback("setup:cancel") == Cancel()
    assert parse_callback("setup:unknown") is None


def test_format_status_inactive() -> None:
    text = format_status(None, False, {})
    assert "INACTIVE" in text


def test_format_status_active_lists_routers() -> None:
    text = format_status(
        tracking_config(), True, {"pancakeswap_v2": {"bnb": "0x" + "ab" * 20}}
    )
    assert "`ACTIVE`" in text
    assert "BNB Chain" in text
    assert "0xtokena" in text
    assert "PancakeSwap V2" in text


@pytest.mark.asyncio
async def test_status_command_reports_active() -> None:
    message = DummyMessage()
    context = make_context(store=DummyStore(tracking_config()))

    await status_command(make_update(message), context)

    text, kwargs = message.calls[0]
    assert "ACTIVE" in text
    assert "TKA" in text
    assert kwargs["parse_mode"] == "MarkdownV2"


@pytest.mark.asyncio
async def test_status_command_group_only() -> None:
    message = DummyMessage()

    await status_command(make_update(message, chat_type="private"), make_context())

    assert message.calls[0][0] == "This command only works in groups!"


@pytest.mark.asyncio
async def test_status_falls_back_to_plain_text() -> None:
    message = FailingMessage()
    context = make_context(store=DummyStore(tracking_config()))

    await status_command(make_update(message), context)

    text, kwargs = message.calls[0]
    assert kwargs["parse_mode"] is None
    assert "\\" not in text


@pytest.mark.asyncio
async def test_stop_command_disables_and_shuts_down() -> None:
    message = DummyMessage()
    store = DummyStore(tracking_config())
    subscriptions = DummySubscriptions()
    context = make_context(store=store, subscriptions=subscriptions)

    await stop_command(make_update(message, user_id=7), context)

    assert store.upserts == 1
    assert store.config.notifications_enabled is False
    assert store.config.token.address == "0xtokena"
    assert subscriptions.stopped == [GROUP]
    assert "Tracking Stopped" in message.calls[0][0]


@pytest.mark.asyncio
async def test_stop_command_allows_chat_admin() -> None:
    message = DummyMessage()
    store = DummyStore(tracking_config(admins=frozenset()))
    context = make_context(store=store, gateway=DummyGateway(admins={9}))

    await stop_command(make_update(message, user_id=9), context)

    assert store.config.notifications_enabled is False


@pytest.mark.asyncio
async def test_stop_command_rejects_non_admin() -> None:
    message = DummyMessage()
    store = DummyStore(tracking_config())
    subscriptions = DummySubscriptions()
    context = make_context(store=store, subscriptions=subscriptions)

    await stop_command(make_update(message, user_id=99), context)

    assert store.upserts == 0
    assert subscriptions.stopped == []
    assert message.calls[0][0] == "Only group admins can stop tracking."


@pytest.mark.asyncio
async def test_stop_command_without_tracking() -> None:
    message = DummyMessage()
    store = DummyStore(replace(tracking_config(), notifications_enabled=False))

    await stop_command(make_update(message), make_context(store=store))

    assert store.upserts == 0
    assert message.calls[0][0] == "No active tracking to stop in this group."


@pytest.mark.asyncio
async def test_setup_command_renders_prompt_with_keyboard() -> None:
    message = DummyMessage()
    coordinator = DummyCoordinator(
        replies=[Reply(PromptKind.SELECT_NETWORK, {"networks": ["bnb", "base"]})]
    )

    await setup_command(make_update(message), make_context(coordinator=coordinator))

    text, kwargs = message.calls[0]
    assert "Select Blockchain Network" in text
    keyboard = kwargs["reply_markup"].inline_keyboard
    assert keyboard[0][0].callback_data == "setup:network:bnb"
    assert keyboard[-1][0].callback_data == "setup:cancel"


@pytest.mark.asyncio
async def test_setup_command_reports_permission_denied() -> None:
    message = DummyMessage()
    coordinator = DummyCoordinator(
        error=PermissionDeniedError("Only group admins can configure tracking.")
    )

    await setup_command(make_update(message), make_context(coordinator=coordinator))

    assert message.calls[0][0] == "Only group admins can configure tracking\\."


@pytest.mark.asyncio
async def test_text_without_session_is_ignored() -> None:
    message = DummyMessage("hello")
    coordinator = DummyCoordinator(session=False)

    await text_handler(make_update(message), make_context(coordinator=coordinator))

    assert coordinator.events == []
    assert message.calls == []


@pytest.mark.asyncio
async def test_text_with_session_is_forwarded() -> None:
    message = DummyMessage("0xTokenA")
    coordinator = DummyCoordinator()

    await text_handler(make_update(message), make_context(coordinator=coordinator))

    assert coordinator.events[0][1] == 7
    assert coordinator.events[0][2].text == "0xTokenA"


@pytest.mark.asyncio
async def test_sample_notification_uses_group_config() -> None:
    notifier = DummyNotifier()
    query = DummyQuery("sample_notification")
    context = make_context(store=DummyStore(tracking_config()), notifier=notifier)

    await sample_notification(make_update(query=query), context)

    assert query.answered
    event, config = notifier.samples[0]
    assert config.token.symbol == "TKA"
    assert event.amount >= 10**18


@pytest.mark.asyncio
async def test_sample_notification_without_config() -> None:
    message = DummyMessage()
    notifier = DummyNotifier()
    context = make_context(notifier=notifier)

    await sample_notification(
        make_update(message, query=DummyQuery("sample_notification")), context
    )

    assert notifier.samples == []
    assert message.calls[0][0] == "Group configuration not found."


@pytest.mark.asyncio
async def test_unknown_callback_answers() -> None:
    message = DummyMessage()
    query = DummyQuery("stale:data")

    await unknown_callback(make_update(message, query=query), make_context())

    assert query.answered
    assert message.calls[0][0] == "This action is not available right now."


def test_sample_event_shape() -> None:
    event = sample_event(6)
    assert event.from_address.startswith("0x") and len(event.from_address) == 42
    assert len(event.tx_hash) == 66
    assert event.amount >= 10**6


@pytest.mark.asyncio
async def test_help_survives_send_failure() -> None:
    await help_command(make_update(OfflineMessage()), make_context())


@pytest.mark.asyncio
async def test_stop_completes_when_reply_fails() -> None:
    store = DummyStore(tracking_config())
    subscriptions = DummySubscriptions()
    context = make_context(store=store, subscriptions=subscriptions)

    await stop_command(make_update(OfflineMessage(), user_id=7), context)

    assert store.config.notifications_enabled is False
    assert subscriptions.stopped == [GROUP]


@pytest.mark.asyncio
async def test_status_survives_send_failure() -> None:
    context = make_context(store=DummyStore(tracking_config()))

    await status_command(make_update(OfflineMessage()), context)
