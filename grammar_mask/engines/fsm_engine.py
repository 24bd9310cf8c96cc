"""
FSM engine - token-level automaton built from a character-level interegular FSM.

This is the default engine. It turns schema text into a regex (see
schema/regex_compiler.py), the regex into a character-level DFA with
interegular, and then answers "which tokens may come next?" per position.

The challenge is that:
    - The grammar operates on characters ('{', '"', 't', ...)
    - The model emits tokens ('{"', 'true', ' world', ...)
    - Token boundaries never line up with grammar rules, and byte-level
      tokens do not even line up with characters

Solution: walk token bytes through the DFA, sharing prefixes
    1. Take every token's output bytes once per vocabulary and insert them
       into a byte trie
    2. A position is a DFA state plus the bytes of a character not yet
       complete. Bytes are buffered until they spell a character, which then
       takes one DFA transition. A branch is dropped as soon as a byte breaks
       UTF-8, a character has no transition, or it leads to a dead state
    3. From each position, walk the trie and the DFA together to find the
       position every token ends in
    4. Starting at the initial position, index every position tokens can
       reach, then keep only the productive ones: those from which a token
       sequence reaches a final state
    5. A token is permitted iff it ends in a productive position. Masks are
       packed into int32 bitmasks when the grammar is compiled

All of the work happens in FSMEngine.compile(), so the decoding hooks only
copy a precomputed mask.

Stop tokens:
    - Permitted exactly in final DFA states with no partial character
    - Accepting one terminates the matcher; afterwards advance() returns
      False and the mask permits stop tokens only
    - Empty and special tokens are never permitted

Example:
    ```python
    engine = FSMEngine()
    compiled = engine.compile(GrammarSource('{"type": "boolean"}'), vocabulary)

    matcher = compiled.create_matcher()
    for token_id in [t_id, r_id, u_id, e_id]:
        assert matcher.advance(token_id)
    matcher.can_terminate()  # True
    ```
"""

import json
import logging
import time
from collections import deque
from functools import lru_cache
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

import interegular
import torch
from interegular.fsm import anything_else

from grammar_mask.engines.base import CompiledGrammar, GrammarEngine, GrammarMatcher, pack_token_ids
from grammar_mask.errors import InvalidGrammarError, InvalidVocabularyError
from grammar_mask.schema.canonical import GrammarSource
from grammar_mask.schema.parser import parse_schema
from grammar_mask.schema.regex_compiler import compile_to_regex
from grammar_mask.vocabulary.vocabulary import Vocabulary

logger = logging.getLogger(__name__)

# DFA state plus the buffered bytes of an incomplete character
Position = Tuple[int, bytes]


@lru_cache(maxsize=65536)
def utf8_char(data: bytes) -> Optional[str]:
    """
    Character spelled by `data`.

    Returns:
        The character, "" if `data` is an incomplete UTF-8 sequence, or None
        if it can never become valid UTF-8
    """
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        if e.reason == "unexpected end of data":
            return ""
        return None


class _TrieNode:
    __slots__ = ("children", "token_ids")

    def __init__(self):
        self.children: Dict[int, "_TrieNode"] = {}
        self.token_ids: List[int] = []


class TokenTrie:
    """
    Byte trie over the output bytes of every matchable token.

    Attributes:
        root: Trie root (empty prefix)
        num_tokens: Tokens inserted
    """

    def __init__(self, vocabulary: Vocabulary):
        self.root = _TrieNode()
        self.num_tokens = 0

        for token_id in range(vocabulary.vocab_size):
            if token_id in vocabulary.stop_token_ids:
                continue
            data = vocabulary.decoded_bytes(token_id)
            if not data:
                continue
            node = self.root
            for byte in data:
                child = node.children.get(byte)
                if child is None:
                    child = node.children[byte] = _TrieNode()
                node = child
            node.token_ids.append(token_id)
            self.num_tokens += 1


@lru_cache(maxsize=8)
def _token_trie(vocabulary: Vocabulary) -> TokenTrie:
    trie = TokenTrie(vocabulary)
    logger.info(f"Built token trie: {trie.num_tokens} of {vocabulary.vocab_size} tokens matchable")
    return trie


class FSMCompiledGrammar(CompiledGrammar):
    """
    DFA plus the token mask of every reachable position.

    Attributes:
        regex: Pattern the DFA was built from
        fsm: Character-level interegular FSM
        live_states: States from which a final state is reachable
        initial_position: Start state with no buffered bytes
    """

    def __init__(self, source: GrammarSource, vocabulary: Vocabulary, regex: str, fsm, trie: TokenTrie):
        super().__init__(source, vocabulary)
        self.regex = regex
        self.fsm = fsm
        self.trie = trie
        self.live_states = _live_states(fsm)
        self.stop_token_ids: FrozenSet[int] = vocabulary.stop_token_ids
        self.initial_position: Position = (fsm.initial, b"")

        self._symbols: Dict[str, Optional[int]] = {}
        self._completions: Dict[Position, bool] = {}
        self._masks: Dict[Position, torch.Tensor] = {}
        self._stop_mask = pack_token_ids(sorted(self.stop_token_ids), vocabulary.vocab_size)

        if fsm.initial not in self.live_states:
            raise InvalidGrammarError("Grammar accepts no strings")

    @property
    def num_positions(self) -> int:
        return len(self._masks)

    def is_final(self, position: Position) -> bool:
        state, pending = position
        return not pending and state in self.fsm.finals

    def is_productive(self, position: Position) -> bool:
        return position in self._masks

    def symbol(self, char: str) -> Optional[int]:
        """Alphabet symbol of a character, or None if the FSM has no use for it."""
        try:
            return self._symbols[char]
        except KeyError:
            pass
        try:
            symbol = self.fsm.alphabet[char]
        except KeyError:
            symbol = None
        self._symbols[char] = symbol
        return symbol

    def step(self, state: int, char: str) -> Optional[int]:
        """Next live state after one character, or None."""
        symbol = self.symbol(char)
        if symbol is None:
            return None
        next_state = self.fsm.map.get(state, {}).get(symbol)
        if next_state is None or next_state not in self.live_states:
            return None
        return next_state

    def consume(self, position: Position, byte: int) -> Optional[Position]:
        """Position after one output byte, or None if the byte is rejected."""
        state, pending = position
        if not pending and byte < 0x80:
            next_state = self.step(state, chr(byte))
            return None if next_state is None else (next_state, b"")

        data = pending + bytes((byte,))
        char = utf8_char(data)
        if char is None:
            return None
        if not char:
            return (state, data) if self._can_complete(state, data) else None
        next_state = self.step(state, char)
        return None if next_state is None else (next_state, b"")

    def walk(self, position: Position, data: bytes) -> Optional[Position]:
        """Position after consuming `data`, or None if any byte is rejected."""
        for byte in data:
            position = self.consume(position, byte)
            if position is None:
                return None
        return position

    def _can_complete(self, state: int, prefix: bytes) -> bool:
        """True if some character starting with `prefix` leads to a live state."""
        key = (state, prefix)
        result = self._completions.get(key)
        if result is None:
            transitions = self.fsm.map.get(state, {})
            result = False
            for char, symbol in self.fsm.alphabet.items():
                if char is not anything_else and not char.encode("utf-8").startswith(prefix):
                    continue
                if transitions.get(symbol) in self.live_states:
                    result = True
                    break
            self._completions[key] = result
        return result

    def token_edges(self, position: Position) -> Dict[Position, List[int]]:
        """Group the tokens accepted at `position` by the position they end in."""
        edges: Dict[Position, List[int]] = {}
        stack = [(self.trie.root, position)]
        while stack:
            node, current = stack.pop()
            for byte, child in node.children.items():
                target = self.consume(current, byte)
                if target is None:
                    continue
                if child.token_ids:
                    edges.setdefault(target, []).extend(child.token_ids)
                if child.children:
                    stack.append((child, target))
        return edges

    def build_masks(self) -> None:
        """
        Index every position tokens can reach and pack its mask.

        Raises:
            InvalidVocabularyError: If no token sequence spells a string the
                grammar accepts
        """
        edges: Dict[Position, Dict[Position, List[int]]] = {}
        queue = deque([self.initial_position])
        while queue:
            position = queue.popleft()
            if position in edges:
                continue
            edges[position] = self.token_edges(position)
            queue.extend(target for target in edges[position] if target not in edges)

        predecessors: Dict[Position, Set[Position]] = {}
        for position, targets in edges.items():
            for target in targets:
                predecessors.setdefault(target, set()).add(position)

        productive = {position for position in edges if self.is_final(position)}
        queue = deque(productive)
        while queue:
            position = queue.popleft()
            for previous in predecessors.get(position, ()):
                if previous not in productive:
                    productive.add(previous)
                    queue.append(previous)

        if self.initial_position not in productive:
            raise InvalidVocabularyError("No token sequence in the vocabulary spells a string the grammar accepts")

        for position in productive:
            allowed = [
                token_id
                for target, token_ids in edges[position].items()
                if target in productive
                for token_id in token_ids
            ]
            if self.is_final(position):
                allowed.extend(self.stop_token_ids)
            self._masks[position] = pack_token_ids(allowed, self.vocabulary.vocab_size)

        logger.debug(f"Indexed {len(edges)} reachable positions, {len(productive)} productive")

    def token_mask(self, position: Position) -> torch.Tensor:
        """Packed mask of tokens permitted at `position` (shared, do not mutate)."""
        return self._masks[position]

    @property
    def stop_mask(self) -> torch.Tensor:
        return self._stop_mask

    def create_matcher(self) -> "FSMGrammarMatcher":
        return FSMGrammarMatcher(self)


class FSMGrammarMatcher(GrammarMatcher):
    """
    Matcher position: one productive position plus a terminated flag.
    """

    compiled: FSMCompiledGrammar

    def __init__(self, compiled: FSMCompiledGrammar):
        super().__init__(compiled)
        self.position = compiled.initial_position
        self.terminated = False

    def _fill_next_token_bitmask(self, bitmask: torch.Tensor) -> None:
        if self.terminated:
            bitmask.copy_(self.compiled.stop_mask)
        else:
            bitmask.copy_(self.compiled.token_mask(self.position))

    def _advance(self, token_id: int) -> bool:
        if self.terminated or not 0 <= token_id < self.vocabulary.vocab_size:
            return False

        if token_id in self.compiled.stop_token_ids:
            if self.compiled.is_final(self.position):
                self.terminated = True
                return True
            return False

        data = self.vocabulary.decoded_bytes(token_id)
        if not data:
            return False

        target = self.compiled.walk(self.position, data)
        if target is None or not self.compiled.is_productive(target):
            return False
        self.position = target
        return True

    def _reset(self) -> None:
        self.position = self.compiled.initial_position
        self.terminated = False

    def _is_terminated(self) -> bool:
        return self.terminated

    def can_terminate(self) -> bool:
        self._check_open()
        return self.terminated or self.compiled.is_final(self.position)


class FSMEngine(GrammarEngine):
    """
    Default engine: schema text -> regex -> interegular DFA -> token masks.
    """

    name = "fsm"

    def compile(self, source: GrammarSource, vocabulary: Vocabulary) -> FSMCompiledGrammar:
        try:
            document = json.loads(source.schema_text)
        except json.JSONDecodeError as e:
            raise InvalidGrammarError(f"Schema is not valid JSON: {e}") from e

        node = parse_schema(document)
        regex = compile_to_regex(node, indent=source.indent)

        try:
            fsm = interegular.parse_pattern(regex).to_fsm()
        except Exception as e:
            raise InvalidGrammarError(f"Could not build automaton from schema: {e}") from e

        trie = _token_trie(vocabulary)
        if trie.num_tokens == 0:
            raise InvalidVocabularyError("No token in the vocabulary decodes to text")

        start = time.perf_counter()
        compiled = FSMCompiledGrammar(source, vocabulary, regex, fsm, trie)
        compiled.build_masks()
        logger.info(
            f"Compiled grammar: {len(fsm.states)} DFA states "
            f"({len(compiled.live_states)} live), {compiled.num_positions} token masks "
            f"in {time.perf_counter() - start:.2f}s"
        )
        return compiled


def _live_states(fsm) -> Set[int]:
    """States from which some final state is reachable."""
    predecessors: Dict[int, Set[int]] = {}
    for state, transitions in fsm.map.items():
        for next_state in transitions.values():
            predecessors.setdefault(next_state, set()).add(state)

    live = set(fsm.finals)
    queue = deque(live)
    while queue:
        state = queue.popleft()
        for previous in predecessors.get(state, ()):
            if previous not in live:
                live.add(previous)
                queue.append(previous)
    return live
