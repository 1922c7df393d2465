import asyncio
import getpass
import logging

from modinstall.console.color import bcolors, fconsole
from modinstall.helpers.errors import UserCanceledError
from modinstall.install.collaborators import (
    DialogAction,
    DialogInput,
    DialogResult,
    DialogType,
    NotificationType,
)
from modinstall.install.context import LoggingNotifier
from modinstall.localisation.service import tr

logger = logging.getLogger("modinstall")


class ConsoleUX:
    """Helper class for printing and asking for a user input via console."""

    def __init__(self, dev_mode: bool = False) -> None:
        self.dev_mode = dev_mode
        bold_orange = [bcolors.WARNING, bcolors.BOLD]
        self.header = fconsole(tr("installation_title"), bold_orange)
        if dev_mode:
            self.header = fconsole("DEVELOPER MODE\n", [bcolors.RED, bcolors.BOLD]) + self.header

    def prompt_for(self, option_list: list[str], description: str | None = None) -> str:
        """Ask user to choose from options, accepting option number or its label."""
        if not option_list:
            raise ValueError("There should be at least one option to confirm when asking user!")
        numbered = {str(idx): option for idx, option in enumerate(option_list, start=1)}
        by_label = {option.lower(): option for option in option_list}
        previous_prompt = None
        try:
            while True:
                if previous_prompt is None:
                    print(self.header)
                    if description is not None:
                        print(description)
                else:
                    print(fconsole(f"'{previous_prompt}' - {tr('incorrect_prompt_answer')}",
                                   bcolors.RED))

                options = ", ".join(f"{fconsole(num)} - {option}"
                                    for num, option in numbered.items())
                print(f"{fconsole(tr('base_prompt'), bcolors.OKGREEN)}: {options}")

                user_choice = input("").strip().strip("'").strip('"')
                if user_choice in numbered:
                    return numbered[user_choice]
                if user_choice.lower() in by_label:
                    return by_label[user_choice.lower()]
                previous_prompt = user_choice or "[ENTER]"
        except (KeyboardInterrupt, EOFError) as ex:
            print(fconsole(tr("installation_aborted_by_user"), bcolors.RED))
            raise UserCanceledError from ex

    def ask_input(self, dialog_input: DialogInput) -> str:
        prompt = f"{dialog_input.label}"
        if dialog_input.value and not dialog_input.password:
            prompt += fconsole(f" [{dialog_input.value}]", bcolors.GRAY)
        prompt += ": "
        try:
            if dialog_input.password:
                answer = getpass.getpass(prompt)
            else:
                answer = input(prompt).strip()
        except (KeyboardInterrupt, EOFError) as ex:
            raise UserCanceledError from ex
        return answer or dialog_input.value

    def ask(self, dialog_type: DialogType, title: str, message: str, choices: list[str],
            inputs: list[DialogInput] | None = None) -> DialogResult:
        color = bcolors.RED if dialog_type == DialogType.ERROR else bcolors.OKBLUE
        description = f"{fconsole(title, [color, bcolors.BOLD])}\n{message}"
        action = self.prompt_for(list(choices), description)
        values = {}
        # inputs only matter for the action user has picked
        if inputs and action != DialogAction.CANCEL:
            values = {dialog_input.id: self.ask_input(dialog_input) for dialog_input in inputs}
        return DialogResult(action, values)


class ConsoleDecisions:
    """Decision collaborator asking questions in terminal, blocking input runs in a thread."""

    def __init__(self, ux: ConsoleUX) -> None:
        self.ux = ux
        # prompts of concurrent dependency installs must not interleave
        self._lock = asyncio.Lock()

    async def show_dialog(self, dialog_type: DialogType, title: str, message: str,
                          choices: list[str],
                          inputs: list[DialogInput] | None = None) -> DialogResult:
        async with self._lock:
            result = await asyncio.to_thread(self.ux.ask, dialog_type, title, message,
                                             choices, inputs)
        logger.debug(f"Dialog '{title}' answered with '{result.action}'")
        return result


class ConsoleNotifier(LoggingNotifier):
    """Prints notifications to the console, in addition to the log."""

    def send_notification(self, notification_type: NotificationType, title: str,
                          message: str = "", notification_id: str | None = None) -> None:
        super().send_notification(notification_type, title, message, notification_id)
        match notification_type:
            case NotificationType.ERROR:
                color = bcolors.RED
            case NotificationType.WARNING:
                color = bcolors.WARNING
            case NotificationType.SUCCESS:
                color = bcolors.OKGREEN
            case NotificationType.ACTIVITY:
                color = bcolors.GRAY
            case _:
                color = bcolors.OKBLUE
        print(fconsole(title, color))
        if message:
            print(message)

    def report_error(self, title: str, message: str, allow_report: bool = True,
                     checksum: str | None = None) -> None:
        super().report_error(title, message, allow_report, checksum)
        print(fconsole(title, [bcolors.RED, bcolors.BOLD]))
        print(fconsole(message, bcolors.RED))
        if checksum:
            print(fconsole(f"MD5: {checksum}", bcolors.GRAY))
        if allow_report:
            print(tr("report_error_hint"))
