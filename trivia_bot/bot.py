import discord
from discord import app_commands
from discord.ext import commands
import logging
from typing import List, Optional

from .api_client import OpenTriviaClient, TriviaAPIError
from .config_manager import ConfigManager
from .models import ANY_CATEGORY, AnswerMark, Category, QuizSettings, QuizSummary
from .quiz_controller import (
    FlowState,
    QuizController,
    QuizControllerError,
    QuizListener,
)

logger = logging.getLogger(__name__)

ANY_CHOICE = "any"
DIFFICULTY_CHOICES = [
    app_commands.Choice(name="Any", value=ANY_CHOICE),
    app_commands.Choice(name="Easy", value="easy"),
    app_commands.Choice(name="Medium", value="medium"),
    app_commands.Choice(name="Hard", value="hard"),
]
MAX_BUTTON_LABEL = 80
MAX_FIELD_VALUE = 1024
PROGRESS_BAR_WIDTH = 20


def progress_bar(fraction: float) -> str:
    filled = round(max(0.0, min(1.0, fraction)) * PROGRESS_BAR_WIDTH)
    return "▰" * filled + "▱" * (PROGRESS_BAR_WIDTH - filled)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit - 1] + "…"


def build_question_embed(controller: QuizController) -> discord.Embed:
    """Render the current question, its options and the remaining time."""
    question = controller.current_question
    round_state = controller.round
    remaining = round_state.time_remaining if round_state else 0

    if round_state and round_state.locked:
        color = 0x6699ff
    elif remaining > 5:
        color = 0x00ff00  # Green
    elif remaining > 2:
        color = 0xff6600  # Orange
    else:
        color = 0xff0000  # Red

    embed = discord.Embed(
        title=f"🎯 Question {controller.position_label}",
        description=question.prompt,
        color=color
    )
    embed.add_field(name="📚 Category", value=question.category, inline=True)
    embed.add_field(name="📈 Difficulty", value=question.difficulty.value.title(), inline=True)

    if round_state and round_state.locked:
        if round_state.selected_answer is None:
            outcome = f"⏰ Time's up! The answer was **{question.correct_answer}**"
        elif round_state.selected_answer == question.correct_answer:
            outcome = f"✅ Correct! **{question.correct_answer}**"
        else:
            outcome = (
                f"❌ **{round_state.selected_answer}** is wrong. "
                f"The answer was **{question.correct_answer}**"
            )
        embed.add_field(name="Result", value=_truncate(outcome, MAX_FIELD_VALUE), inline=False)
        embed.set_footer(text=f"Score: {controller.session.score} • Press Next to continue")
    else:
        embed.add_field(
            name="⏱️ Time Remaining",
            value=f"{remaining} second{'s' if remaining != 1 else ''}",
            inline=False
        )
        embed.set_footer(text=f"{progress_bar(controller.progress)} Score: {controller.session.score}")
    return embed


def build_summary_embed(summary: QuizSummary) -> discord.Embed:
    """Render the final score and the list of questions with their answers."""
    embed = discord.Embed(
        title="🎉 Quiz Completed!",
        description=f"Your score: **{summary.score_line}**",
        color=0x00ff00
    )
    lines = [
        f"**Q{entry.number}:** {entry.prompt}\nCorrect: {entry.correct_answer}"
        for entry in summary.entries
    ]
    # Embed fields are limited in size, so pack the recap into as few as possible.
    chunk: List[str] = []
    for line in lines:
        line = _truncate(line, MAX_FIELD_VALUE)
        if chunk and len("\n".join(chunk + [line])) > MAX_FIELD_VALUE:
            embed.add_field(name="📋 Summary", value="\n".join(chunk), inline=False)
            chunk = []
        chunk.append(line)
    if chunk:
        embed.add_field(name="📋 Summary", value="\n".join(chunk), inline=False)
    embed.set_footer(text=f"{progress_bar(1.0)} Press Restart or use /quiz to play again")
    return embed


def build_loading_embed(settings_text: str) -> discord.Embed:
    return discord.Embed(
        title="⏳ Loading questions...",
        description=settings_text,
        color=0x6699ff
    )


class AnswerButton(discord.ui.Button):
    """One answer option of the question on display."""

    def __init__(self, controller: QuizController, question_index: int, answer: str,
                 mark: Optional[AnswerMark], locked: bool):
        if mark is AnswerMark.CORRECT:
            style = discord.ButtonStyle.success
        elif mark is AnswerMark.WRONG:
            style = discord.ButtonStyle.danger
        else:
            style = discord.ButtonStyle.secondary
        super().__init__(label=_truncate(answer, MAX_BUTTON_LABEL), style=style, disabled=locked)
        self.controller = controller
        self.question_index = question_index
        self.answer = answer

    async def callback(self, interaction: discord.Interaction):
        session = self.controller.session
        if session is None or session.current_index != self.question_index:
            await send_error_response(interaction, "This question is no longer active.", "❌ Expired Question")
            return
        await interaction.response.defer()
        try:
            await self.controller.select_answer(self.answer)
        except (QuizControllerError, ValueError) as e:
            logger.info(f"Answer rejected: {e}")
            await send_error_response(interaction, str(e), "❌ Answer Not Accepted")


class NextButton(discord.ui.Button):
    def __init__(self, controller: QuizController, enabled: bool):
        super().__init__(label="Next ➡️", style=discord.ButtonStyle.primary, disabled=not enabled, row=4)
        self.controller = controller

    async def callback(self, interaction: discord.Interaction):
        await interaction.response.defer()
        try:
            await self.controller.next_question()
        except QuizControllerError as e:
            await send_error_response(interaction, str(e), "❌ Not Yet")


class QuestionView(discord.ui.View):
    """Answer buttons for the current question plus the Next button."""

    def __init__(self, controller: QuizController):
        super().__init__(timeout=None)
        round_state = controller.round
        locked = round_state is not None and round_state.locked
        for answer in controller.current_question.answer_options:
            mark = round_state.mark_of(answer) if round_state else None
            self.add_item(AnswerButton(controller, controller.session.current_index, answer, mark, locked))
        self.add_item(NextButton(controller, enabled=locked))


class SummaryView(discord.ui.View):
    """Restart button shown under the final summary."""

    def __init__(self, controller: QuizController):
        super().__init__(timeout=None)
        self.controller = controller

    @discord.ui.button(label="Restart 🔁", style=discord.ButtonStyle.primary)
    async def restart_button(self, interaction: discord.Interaction, button: discord.ui.Button):
        try:
            await self.controller.restart()
        except QuizControllerError as e:
            await send_error_response(interaction, str(e), "❌ Cannot Restart")
            return
        await interaction.response.send_message(
            "🔁 Ready for another round! Use `/quiz` to pick your settings."
        )


class DiscordQuizPresenter(QuizListener):
    """Translates quiz events into Discord messages in the channel the quiz runs in."""

    def __init__(self):
        self.channel: Optional[discord.abc.Messageable] = None
        self.controller: Optional[QuizController] = None
        self.message: Optional[discord.Message] = None

    async def on_loading(self, settings: QuizSettings) -> None:
        logger.debug(f"Loading quiz for channel {getattr(self.channel, 'id', None)}")

    async def on_load_failed(self, message: str) -> None:
        if self.channel is None:
            return
        try:
            await self.channel.send(embed=discord.Embed(title="❌ Quiz Start Failed", description=message, color=0xff0000))
        except discord.HTTPException as e:
            logger.error(f"Failed to send load failure message: {e}")

    async def on_question(self, controller: QuizController) -> None:
        if self.channel is None:
            return
        await self._retire_message()
        try:
            self.message = await self.channel.send(
                embed=build_question_embed(controller),
                view=QuestionView(controller)
            )
        except discord.HTTPException as e:
            logger.error(f"Failed to present question: {e}")
            self.message = None

    async def on_tick(self, remaining: int) -> None:
        if self.message is None or self.controller is None or self.controller.state is not FlowState.ACTIVE:
            return
        try:
            await self.message.edit(embed=build_question_embed(self.controller))
        except discord.HTTPException as e:
            # Log error but don't raise to avoid breaking timer
            logger.warning(f"Failed to update timer: {e}")

    async def on_answered(self, controller: QuizController) -> None:
        if self.message is None:
            return
        try:
            await self.message.edit(embed=build_question_embed(controller), view=QuestionView(controller))
        except discord.HTTPException as e:
            logger.error(f"Failed to reveal answer: {e}")

    async def on_finished(self, summary: QuizSummary) -> None:
        await self._retire_message()
        if self.channel is None or self.controller is None:
            return
        try:
            await self.channel.send(embed=build_summary_embed(summary), view=SummaryView(self.controller))
        except discord.HTTPException as e:
            logger.error(f"Error sending completion message: {e}")
            try:
                await self.channel.send(f"🎉 Quiz completed! Your score: {summary.score_line}")
            except discord.HTTPException:
                logger.error("Failed to send fallback completion message")

    async def on_reset(self) -> None:
        await self._retire_message()

    async def _retire_message(self) -> None:
        """Strip the buttons from the previous question so stale clicks are impossible."""
        message, self.message = self.message, None
        if message is None:
            return
        try:
            await message.edit(view=None)
        except discord.HTTPException as e:
            logger.debug(f"Could not remove buttons from old question: {e}")


async def send_error_response(interaction: discord.Interaction, message: str, title: str = "❌ Error"):
    """Send formatted error response to user"""
    try:
        embed = discord.Embed(
            title=title,
            description=message,
            color=0xff0000
        )
        embed.set_footer(text="If this error persists, try using /help for available commands")

        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)
    except discord.HTTPException:
        logger.error("Failed to send error response to user")


class QuizBot(commands.Bot):
    """Discord bot that runs trivia quizzes from the Open Trivia Database"""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,  # Fallback prefix, mainly using slash commands
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.config_manager = ConfigManager()
        self.api_client: Optional[OpenTriviaClient] = None
        self.presenter = DiscordQuizPresenter()
        self.quiz_controller: Optional[QuizController] = None
        self.categories: List[Category] = [ANY_CATEGORY]

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.load_settings()

            self.api_client = OpenTriviaClient(
                base_url=self.config_manager.get_api_base_url(),
                timeout=self.config_manager.get_request_timeout()
            )
            self.quiz_controller = QuizController(self.api_client, self.config_manager, self.presenter)
            self.presenter.controller = self.quiz_controller

            await self.load_trivia_data()
            await self.setup_commands()

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    def load_settings(self):
        """Apply config.json and fall back to defaults if the result is inconsistent"""
        for error in self.config_manager.apply_config(self.app_config):
            logger.warning(f"Ignoring configuration value: {error}")

        validation = self.config_manager.validate_settings()
        if not validation['valid']:
            logger.error(f"Invalid settings, using defaults: {'; '.join(validation['issues'])}")
            self.config_manager.reset_to_defaults()

    async def load_trivia_data(self):
        """Acquire the session token and cache the category list"""
        try:
            await self.api_client.acquire_token()
        except TriviaAPIError as e:
            # Retried when the first quiz starts
            logger.error(f"Could not acquire session token: {e}")

        try:
            self.categories = await self.api_client.list_categories()
            logger.info(f"Loaded {len(self.categories) - 1} trivia categories")
        except TriviaAPIError as e:
            logger.error(f"Could not load trivia categories: {e}")
            self.categories = [ANY_CATEGORY]

    async def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="categories", description="List the available question categories")
        async def categories_command(interaction: discord.Interaction):
            await self.handle_categories(interaction)

        @self.tree.command(name="quiz", description="Start a trivia quiz")
        @app_commands.describe(
            amount="Number of questions (5-20)",
            category="Question category",
            difficulty="Question difficulty"
        )
        @app_commands.choices(difficulty=DIFFICULTY_CHOICES)
        async def quiz_command(
            interaction: discord.Interaction,
            amount: Optional[int] = None,
            category: Optional[str] = None,
            difficulty: Optional[app_commands.Choice[str]] = None
        ):
            await self.handle_quiz(
                interaction,
                amount,
                category,
                difficulty.value if difficulty else None
            )

        @quiz_command.autocomplete("category")
        async def category_autocomplete(interaction: discord.Interaction, current: str):
            return self.category_choices(current)

        @self.tree.command(name="status", description="Show current quiz status and progress")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="stop", description="Stop the current quiz")
        async def stop_command(interaction: discord.Interaction):
            await self.handle_stop(interaction)

        @self.tree.command(name="set_timer", description="Set the time limit for each question (5-300 seconds)")
        async def set_timer_command(interaction: discord.Interaction, seconds: int):
            await self.handle_set_timer(interaction, seconds)

        logger.info("Slash commands registered successfully")

    def category_choices(self, current: str) -> List[app_commands.Choice[str]]:
        """Autocomplete choices for the category option, at most 25."""
        current = (current or "").lower()
        choices = []
        for category in self.categories:
            if current and current not in category.name.lower():
                continue
            choices.append(app_commands.Choice(
                name=_truncate(category.name, 100),
                value=category.id or ANY_CHOICE
            ))
        return choices[:25]

    def category_name(self, category_id: str) -> str:
        for category in self.categories:
            if category.id == category_id:
                return category.name
        return category_id or ANY_CATEGORY.name

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.quiz_controller is not None:
            await self.quiz_controller.stop()
        if self.api_client is not None:
            await self.api_client.close()
        await super().close()

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        help_embed = discord.Embed(
            title="🎯 Trivia Quiz Bot Commands",
            description="Answer multiple choice questions from the Open Trivia Database against the clock",
            color=0x00ff00
        )
        help_embed.add_field(
            name="🎮 Quiz Commands",
            value=(
                "`/quiz [amount] [category] [difficulty]` - Start a quiz (5-20 questions)\n"
                "`/categories` - List the available categories\n"
                "`/status` - Show current quiz status and progress\n"
                "`/stop` - Stop the current quiz"
            ),
            inline=False
        )
        help_embed.add_field(
            name="📋 Settings",
            value="`/set_timer <seconds>` - Set the time limit for each question (5-300 sec)",
            inline=False
        )
        help_embed.add_field(
            name="⚙️ Current Settings",
            value=f"```\n{self.config_manager.get_settings_summary()}\n```",
            inline=False
        )
        help_embed.set_footer(text="Use the buttons under each question to answer")

        try:
            await interaction.response.send_message(embed=help_embed)
        except discord.HTTPException as e:
            logger.error(f"Error in help command: {e}")

    async def handle_categories(self, interaction: discord.Interaction):
        """Handle /categories command"""
        names = [category.name for category in self.categories]
        embed = discord.Embed(
            title="📚 Trivia Categories",
            description=_truncate("\n".join(f"• {name}" for name in names), 4096),
            color=0x6699ff
        )
        if len(self.categories) <= 1:
            embed.set_footer(text="Category list unavailable, only 'Any' can be used right now")
        try:
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in categories command: {e}")

    async def handle_quiz(
        self,
        interaction: discord.Interaction,
        amount: Optional[int],
        category: Optional[str],
        difficulty: Optional[str]
    ):
        """Handle /quiz command"""
        if self.quiz_controller.state in (FlowState.LOADING, FlowState.ACTIVE, FlowState.ANSWERED):
            await send_error_response(
                interaction,
                "A quiz is already running. Finish it or use `/stop` first.",
                "❌ Quiz In Progress"
            )
            return

        category_id = "" if category in (None, ANY_CHOICE) else category
        difficulty_name = "" if difficulty in (None, ANY_CHOICE) else difficulty
        effective_amount = self.quiz_controller.quiz_engine.clamp_amount(
            amount if amount is not None else self.config_manager.get_default_amount()
        )

        settings_text = (
            f"Questions: {effective_amount}\n"
            f"Category: {self.category_name(category_id)}\n"
            f"Difficulty: {difficulty_name.title() or 'Any'}\n"
            f"Timer: {self.config_manager.get_timer_duration()} seconds per question"
        )
        try:
            await interaction.response.send_message(embed=build_loading_embed(settings_text))
        except discord.HTTPException as e:
            logger.error(f"Failed to acknowledge quiz command: {e}")
            return

        self.presenter.channel = interaction.channel
        try:
            await self.quiz_controller.start_quiz(effective_amount, category_id, difficulty_name)
        except QuizControllerError as e:
            await send_error_response(interaction, str(e), "❌ Quiz Start Failed")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        status = self.quiz_controller.get_status()
        embed = discord.Embed(title="📊 Quiz Status", color=0x6699ff)
        embed.add_field(name="State", value=status['state'].title(), inline=True)
        if status['total_questions']:
            embed.add_field(name="Question", value=status['position'] or "-", inline=True)
            embed.add_field(name="Score", value=f"{status['score']} / {status['total_questions']}", inline=True)
            embed.add_field(name="Progress", value=progress_bar(status['progress']), inline=False)
        else:
            embed.description = "No quiz running. Use `/quiz` to start one."
        try:
            await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in status command: {e}")

    async def handle_stop(self, interaction: discord.Interaction):
        """Handle /stop command"""
        stopped = await self.quiz_controller.stop()
        message = "🛑 Quiz stopped. Use `/quiz` to start a new one." if stopped else "ℹ️ No quiz is running."
        try:
            await interaction.response.send_message(message, ephemeral=not stopped)
        except discord.HTTPException as e:
            logger.error(f"Error in stop command: {e}")

    async def handle_set_timer(self, interaction: discord.Interaction, seconds: int):
        """Handle /set_timer command"""
        result = self.config_manager.set_timer_duration(seconds)
        try:
            if result['success']:
                embed = discord.Embed(
                    title="✅ Timer Duration Updated",
                    description=f"Each question will now have **{seconds} seconds**, starting with the next quiz",
                    color=0x00ff00
                )
                await interaction.response.send_message(embed=embed)
            else:
                await interaction.response.send_message(result['user_message'], ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in set_timer command: {e}")


async def run_bot(token, config=None):
    """Run the bot with proper error handling"""
    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Trivia Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
