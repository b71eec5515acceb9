"""
Local intent matching for spoken and typed commands

Maps a free-text command to a scripted Jarvis-style reply plus an optional
navigation target without touching the network.

Matching rules:
- The command is lower-cased and compared by substring containment
- Rules are tested in table order and the first hit wins, so the order of
  INTENT_RULES is the priority order (e.g. "пока" also matches "покажи
  новости" because the farewell rule comes first)
- No hit returns None and the caller falls back to the remote backend

Rule categories: greeting, help, time, date, navigation, smart_home,
courtesy, status, identity. The offline worker reuses the greeting, time,
date and identity rules.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from jarvoice.assistant.models import CommandResult
from jarvoice.utils import capitalize_first

HONORIFIC_MALE = "сэр"
HONORIFIC_FEMALE = "мэм"

_WEEKDAYS = (
    "понедельник",
    "вторник",
    "среда",
    "четверг",
    "пятница",
    "суббота",
    "воскресенье",
)

_MONTHS_GENITIVE = (
    "января",
    "февраля",
    "марта",
    "апреля",
    "мая",
    "июня",
    "июля",
    "августа",
    "сентября",
    "октября",
    "ноября",
    "декабря",
)


@dataclass(frozen=True)
class IntentRule:
    category: str
    triggers: tuple[str, ...]
    template: str
    action: str | None = None

    def matches(self, lowered: str) -> bool:
        return any(trigger in lowered for trigger in self.triggers)


INTENT_RULES: tuple[IntentRule, ...] = (
    # Greetings
    IntentRule(
        "greeting",
        ("привет", "здравствуй"),
        "Здравствуйте, {honorific}. Рад вас слышать. Все системы функционируют в штатном режиме.",
    ),
    IntentRule(
        "greeting",
        ("доброе утро",),
        "Доброе утро, {honorific}. Надеюсь, вы хорошо отдохнули. Чем могу быть полезен?",
    ),
    IntentRule("greeting", ("добрый день",), "Добрый день, {honorific}. Я к вашим услугам."),
    IntentRule("greeting", ("добрый вечер",), "Добрый вечер, {honorific}. Желаю приятного вечера."),
    IntentRule(
        "greeting",
        ("спокойной ночи", "пока", "до свидания"),
        "Спокойной ночи, {honorific}. Приятных снов. Я буду на связи, если понадоблюсь.",
    ),
    # Help
    IntentRule(
        "help",
        ("что ты умеешь", "помощь", "какие команды", "помоги"),
        "{Honorific}, я могу помочь с навигацией по разделам, управлением умным домом, отслеживанием "
        "финансов и здоровья, музыкой, погодой и многим другим. Скажите например: открой музыку, "
        "какая погода, включи свет, или который час.",
    ),
    # Time and date
    IntentRule(
        "time",
        ("который час", "сколько время", "время"),
        "Сейчас {hours} часов {minutes} минут, {honorific}.",
    ),
    IntentRule(
        "date",
        ("какая дата", "какое число", "сегодня"),
        "Сегодня {date}, {honorific}.",
    ),
    # Section navigation
    IntentRule(
        "navigation",
        ("открой музыку", "музыка", "включи плеер"),
        "Конечно, {honorific}. Открываю музыкальный раздел.",
        "music",
    ),
    IntentRule(
        "navigation",
        ("открой здоровье", "здоровье", "трекер здоровья"),
        "Открываю раздел здоровья, {honorific}.",
        "health",
    ),
    IntentRule(
        "navigation",
        ("открой советы", "дай совет", "совет"),
        "Открываю раздел полезных советов, {honorific}.",
        "tips",
    ),
    IntentRule(
        "navigation",
        ("открой настройки голоса", "настрой голос", "голосовые настройки"),
        "Открываю настройки голоса, {honorific}.",
        "voicesettings",
    ),
    IntentRule(
        "navigation",
        ("открой темы", "сменить тему", "оформление"),
        "Открываю настройки оформления, {honorific}.",
        "themes",
    ),
    IntentRule(
        "navigation",
        ("открой погоду", "погода", "прогноз"),
        "Открываю погоду, {honorific}.",
        "weather",
    ),
    IntentRule(
        "navigation",
        ("открой календарь", "календарь", "события"),
        "Открываю календарь, {honorific}.",
        "calendar",
    ),
    IntentRule(
        "navigation",
        ("открой финансы", "финансы", "расходы", "баланс"),
        "Открываю раздел финансов, {honorific}.",
        "finance",
    ),
    IntentRule(
        "navigation",
        ("умный дом", "устройства", "дом"),
        "Открываю управление умным домом, {honorific}.",
        "smarthome",
    ),
    IntentRule(
        "navigation",
        ("напоминания", "мои напоминания", "напомни"),
        "Открываю раздел напоминаний, {honorific}.",
        "reminders",
    ),
    IntentRule(
        "navigation",
        ("новости", "покажи новости"),
        "Открываю новости, {honorific}.",
        "news",
    ),
    IntentRule(
        "navigation",
        ("настроение", "как я себя чувствую"),
        "Открываю раздел настроения, {honorific}.",
        "mood",
    ),
    IntentRule(
        "navigation",
        ("переводчик", "перевод", "переведи"),
        "Открываю переводчик, {honorific}.",
        "translate",
    ),
    IntentRule(
        "navigation",
        ("настройки", "параметры"),
        "Открываю настройки, {honorific}.",
        "settings",
    ),
    IntentRule(
        "navigation",
        ("бэкап", "резервная копия", "экспорт"),
        "Открываю раздел резервного копирования, {honorific}.",
        "backup",
    ),
    # Smart home verbs
    IntentRule("smart_home", ("включи свет", "зажги свет"), "Как пожелаете, {honorific}. Включаю освещение."),
    IntentRule("smart_home", ("выключи свет", "погаси свет"), "Выключаю освещение, {honorific}."),
    IntentRule(
        "smart_home",
        ("включи кондиционер", "охлади"),
        "Включаю кондиционер, {honorific}. Температура будет оптимальной через несколько минут.",
    ),
    IntentRule("smart_home", ("выключи кондиционер",), "Выключаю кондиционер, {honorific}."),
    IntentRule("smart_home", ("включи телевизор", "телевизор"), "Включаю телевизор, {honorific}."),
    # Courtesy
    IntentRule(
        "courtesy",
        ("спасибо", "благодарю"),
        "Всегда к вашим услугам, {honorific}. Обращайтесь в любое время.",
    ),
    IntentRule(
        "courtesy",
        ("молодец", "хорошо работаешь", "отлично"),
        "Благодарю за высокую оценку, {honorific}. Стараюсь быть максимально полезным.",
    ),
    # Status and identity
    IntentRule(
        "status",
        ("статус", "как дела", "как ты"),
        "Все системы работают в штатном режиме, {honorific}. Готов выполнить любую вашу команду.",
    ),
    IntentRule(
        "identity",
        ("кто ты", "как тебя зовут", "представься"),
        "Я Джарвис, ваш персональный интеллектуальный ассистент. Создан для помощи в повседневных "
        "задачах, управления умным домом и организации вашего времени, {honorific}.",
    ),
)

OFFLINE_CATEGORIES = frozenset({"greeting", "time", "date", "identity"})


def honorific_for(gender: str | None) -> str:
    """Pick the address term once per user profile."""
    if (gender or "").strip().lower() == "female":
        return HONORIFIC_FEMALE
    return HONORIFIC_MALE


def welcome_message(honorific: str) -> str:
    return (
        f"Добрый день, {honorific}. Я Джарвис, ваш персональный ассистент. "
        "Все системы функционируют в штатном режиме. К вашим услугам."
    )


def format_russian_date(moment: datetime) -> str:
    """Render a date like ``понедельник, 5 января 2026 г.``."""
    weekday = _WEEKDAYS[moment.weekday()]
    month = _MONTHS_GENITIVE[moment.month - 1]
    return f"{weekday}, {moment.day} {month} {moment.year} г."


def render_rule(rule: IntentRule, honorific: str, now: datetime | None = None) -> CommandResult:
    moment = now or datetime.now()
    text = rule.template.format(
        honorific=honorific,
        Honorific=capitalize_first(honorific),
        hours=moment.hour,
        minutes=moment.minute,
        date=format_russian_date(moment),
    )
    return CommandResult(response_text=text, action=rule.action)


def find_rule(
    command: str,
    rules: tuple[IntentRule, ...] = INTENT_RULES,
    categories: frozenset[str] | None = None,
) -> IntentRule | None:
    lowered = (command or "").lower()
    if not lowered.strip():
        return None
    for rule in rules:
        if categories is not None and rule.category not in categories:
            continue
        if rule.matches(lowered):
            return rule
    return None


def match_intent(
    command: str,
    honorific: str,
    now: datetime | None = None,
    *,
    categories: frozenset[str] | None = None,
) -> CommandResult | None:
    """Return the scripted reply for the first matching rule, or None when unresolved."""
    rule = find_rule(command, categories=categories)
    if rule is None:
        return None
    return render_rule(rule, honorific, now)
