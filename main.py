import pygame
import sys

from classes import Game, MISMATCH, WON
from database import GameDatabase, SnapshotStore, CrossTabCounter
from settings import load_settings, save_settings
from shared.models import DEFAULT_DIFFICULTY, DIFFICULTY_PRESETS, Difficulty

# Memory optimization - only the pygame parts we use
pygame.display.init()
pygame.font.init()

# Colors
WHITE = (255, 255, 255)
BLACK = (0, 0, 0)
GRAY = (200, 200, 200)
BLUE = (0, 100, 255)
GREEN = (0, 200, 0)
RED = (200, 0, 0)
CARD_BACK_COLOR = (50, 50, 200)
CARD_FRONT_COLOR = (220, 220, 255)
CARD_MATCHED_COLOR = (200, 255, 200)

# Fonts
FONT_SMALL = pygame.font.SysFont('Arial', 20)
FONT_MEDIUM = pygame.font.SysFont('Arial', 30)
FONT_CARD = pygame.font.SysFont('Arial', 36, bold=True)

FPS = 60
CARD_MARGIN = 10

# Posted by the move counter watcher thread when another game adds moves
TOTAL_MOVES_EVENT = pygame.USEREVENT + 1


class GameGUI:
    """Graphical front end: turns clicks into game commands and draws the board."""

    def __init__(self, game, counter, settings):
        self.game = game
        self.counter = counter
        self.settings = settings
        self.clock = pygame.time.Clock()
        self.screen = None
        self.width = 800
        self.height = 600
        self.board_margin_top = 120
        self.board_margin_left = 0
        self.card_width = 80
        self.card_height = 100
        self.total_moves = counter.last_seen
        self.text_cache = {}
        self.buttons = {}

    def setup_window(self):
        """Set up the game window."""
        self.screen = pygame.display.set_mode((self.width, self.height))
        pygame.display.set_caption("Memory Match")

        x = 230
        for name in list(DIFFICULTY_PRESETS) + ["New Game"]:
            self.buttons[name] = pygame.Rect(x, 20, 130, 36)
            x += 140

    def layout_board(self):
        """Size and center the cards for the current board dimensions."""
        difficulty = self.game.state.difficulty
        rows, cols = difficulty.rows, difficulty.cols
        max_card_width = (self.width - CARD_MARGIN * (cols + 1)) // cols
        max_card_height = (self.height - self.board_margin_top - CARD_MARGIN * (rows + 1)) // rows
        self.card_width = min(max_card_width, max_card_height * 0.8)
        self.card_height = self.card_width * 1.25
        self.board_margin_left = (self.width - (cols * self.card_width + (cols - 1) * CARD_MARGIN)) // 2

    def get_card_rect(self, index):
        """Get the rectangle for the card at a board index."""
        row, col = divmod(index, self.game.state.difficulty.cols)
        x = self.board_margin_left + col * (self.card_width + CARD_MARGIN)
        y = self.board_margin_top + row * (self.card_height + CARD_MARGIN)
        return pygame.Rect(x, y, self.card_width, self.card_height)

    def get_card_at_pos(self, pos):
        """Get the board index under a screen position."""
        for card in self.game.state.cards:
            if self.get_card_rect(card.index).collidepoint(pos):
                return card.index
        return None

    def render_text(self, font, text, color):
        """Render and cache text to avoid recreating text surfaces."""
        cache_key = (font, text, color)
        if cache_key not in self.text_cache:
            if len(self.text_cache) > 100:
                self.text_cache.clear()
            self.text_cache[cache_key] = font.render(text, True, color)
        return self.text_cache[cache_key]

    def format_time(self, seconds):
        """Format time as MM:SS."""
        minutes, seconds = divmod(seconds, 60)
        return f"{minutes:02d}:{seconds:02d}"

    def draw_card(self, card, rect):
        if card.matched:
            pygame.draw.rect(self.screen, CARD_MATCHED_COLOR, rect, 0, 8)
        elif card.revealed:
            pygame.draw.rect(self.screen, CARD_FRONT_COLOR, rect, 0, 8)
        else:
            pygame.draw.rect(self.screen, CARD_BACK_COLOR, rect, 0, 8)
        pygame.draw.rect(self.screen, BLACK, rect, 2, 8)

        if card.revealed:
            text = self.render_text(FONT_CARD, card.symbol, BLACK)
            self.screen.blit(text, (rect.centerx - text.get_width() // 2, rect.centery - text.get_height() // 2))

    def draw_board(self):
        for card in self.game.state.cards:
            self.draw_card(card, self.get_card_rect(card.index))

    def draw_ui(self):
        """Draw the counters and the buttons."""
        lines = [
            f"Moves: {self.game.moves}",
            f"Time: {self.format_time(self.game.elapsed_seconds)}",
            f"All games: {self.total_moves} moves",
        ]
        for i, line in enumerate(lines):
            self.screen.blit(self.render_text(FONT_SMALL, line, BLACK), (10, 10 + i * 24))

        mouse_pos = pygame.mouse.get_pos()
        current = str(self.game.state.difficulty)
        for name, rect in self.buttons.items():
            selected = DIFFICULTY_PRESETS.get(name) == current
            color = GREEN if selected else BLUE if rect.collidepoint(mouse_pos) else GRAY
            pygame.draw.rect(self.screen, color, rect, 0, 10)
            text = self.render_text(FONT_SMALL, name, WHITE if selected else BLACK)
            self.screen.blit(text, (rect.centerx - text.get_width() // 2, rect.centery - text.get_height() // 2))

        if self.game.won:
            text = self.render_text(FONT_MEDIUM, "Game Over! You won!", RED)
            self.screen.blit(text, (self.width // 2 - text.get_width() // 2, 75))

    def handle_click(self, pos):
        for name, rect in self.buttons.items():
            if rect.collidepoint(pos):
                if name == "New Game":
                    self.game.new_game()
                else:
                    self.change_difficulty(DIFFICULTY_PRESETS[name])
                self.layout_board()
                return

        index = self.get_card_at_pos(pos)
        if index is None:
            return
        result = self.game.flip(index)
        if result.status == MISMATCH:
            print(f"No match. Cards will flip back in {result.delay_ms / 1000:.1f} seconds.")
        elif result.status == WON:
            print(f"Game Over! You completed the game in {result.moves} moves "
                  f"and {self.format_time(self.game.elapsed_seconds)}.")

    def change_difficulty(self, text):
        difficulty = Difficulty.parse(text)
        self.game.change_difficulty(difficulty)
        self.settings["difficulty"] = str(difficulty)
        save_settings(self.settings)

    def run_game(self):
        """Run the game loop until the window is closed."""
        self.layout_board()
        while True:
            for event in pygame.event.get():
                if event.type == pygame.QUIT:
                    return
                elif event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
                    self.handle_click(event.pos)
                elif event.type == TOTAL_MOVES_EVENT:
                    self.total_moves = event.total

            # Own moves are not reported by the watcher
            self.total_moves = max(self.total_moves, self.counter.last_seen)
            self.game.update()

            self.screen.fill(WHITE)
            self.draw_ui()
            self.draw_board()
            pygame.display.flip()
            self.clock.tick(FPS)


def main():
    """Main function to run the game."""
    settings = load_settings()
    db = GameDatabase(settings["db_file"])
    store = SnapshotStore(db, freshness_seconds=settings["freshness_seconds"])
    counter = CrossTabCounter(db)
    counter.observe(lambda total: pygame.event.post(pygame.event.Event(TOTAL_MOVES_EVENT, total=total)))

    try:
        default_difficulty = Difficulty.parse(settings["difficulty"])
    except ValueError as e:
        print(f"Invalid difficulty in settings, using {DEFAULT_DIFFICULTY}: {e}")
        default_difficulty = DEFAULT_DIFFICULTY

    game = Game(store, counter, mismatch_delay_ms=settings["mismatch_delay_ms"],
                default_difficulty=default_difficulty)
    game.start()

    pygame.init()
    gui = GameGUI(game, counter, settings)
    gui.setup_window()
    counter.start_watching(settings["watch_interval"])
    try:
        gui.run_game()
    finally:
        counter.stop_watching()
        db.close()
        pygame.quit()
    sys.exit()


if __name__ == "__main__":
    main()
