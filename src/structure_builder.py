from typing import List, NamedTuple, Optional

from cdm import CdmDocument, CdmLoopInstance, CdmNode, CdmSegment, count_segments
from edi_schema_models import StructureLoop, StructureSegment, TransactionSchema, parse_max_use, parse_repeat
from log_sink import LogSink, no_op_sink


class LoopResult(NamedTuple):
    """Outcome of one recursive loop attempt. end_index == start index means no progress."""
    loop_node: Optional[CdmLoopInstance]
    end_index: int


def find_first_segment_trigger(loop_def: StructureLoop) -> Optional[str]:
    """The segment ID that opens an instance of `loop_def`, looking through nested first loops."""
    for child in loop_def.children:
        if child.type == 'segment':
            return child.xid
        nested_trigger = find_first_segment_trigger(child)
        if nested_trigger:
            return nested_trigger
    return None

def validate_trigger_segment(segment: CdmSegment, loop_def: StructureLoop, log: LogSink = no_op_sink) -> bool:
    # Hook for structural checks beyond the ID match (e.g. HL03 level codes). Accepts every candidate for now.
    log(f"ValidateTrigger[{loop_def.xid} for {segment.segment_id}(L{segment.line_number})]: Segment ID matches expected trigger for loop. Passing structural trigger validation.", 'debug')
    return True

def _repeat_label(max_repeat: Optional[int]) -> str:
    return 'unbounded' if max_repeat is None else str(max_repeat)

def _within(count: int, max_repeat: Optional[int]) -> bool:
    return max_repeat is None or count <= max_repeat


class StructureBuilder:
    """
    Matches the flat segment list of a parsed document against a schema's loop grammar.

    Matching is greedy and strictly in schema order, with no backtracking. Segments that
    fit nowhere are surfaced as top-level orphans rather than dropped.
    """

    def __init__(self, parsed: Optional[CdmDocument], schema: Optional[TransactionSchema], log: LogSink = no_op_sink):
        self.parsed = parsed
        self.schema = schema
        self.log = log
        self.segments: List[CdmSegment] = list(parsed.segments) if parsed else []
        self._consumed: List[bool] = [False] * len(self.segments)
        self._cursor = 0
        self._result: List[CdmNode] = []

    # --- Recursive loop instance construction ---
    def _abort_instance(self, loop_node: CdmLoopInstance, start_index: int, first_required: bool) -> LoopResult:
        # Either way the caller sees no progress; a partial node is returned only when
        # the loop had plausibly started.
        return LoopResult(None if first_required else loop_node, start_index)

    def _process_loop(self, loop_def: StructureLoop, start_index: int, instance_num: int, depth: int = 0) -> LoopResult:
        segments = self.segments
        prefix = f"{'  ' * depth}Loop[{loop_def.xid}#{instance_num}]:"
        self.log(f"{prefix} Entering processLoop, startIndex={start_index}", 'debug')

        loop_node = CdmLoopInstance(
            definition=loop_def,
            loop_id=f"{loop_def.xid}_{instance_num}",
            instance_number=instance_num,
        )
        local_index = start_index

        for child_index, child_def in enumerate(loop_def.children):
            self.log(f"{prefix} -> Processing schema child {child_index + 1}/{len(loop_def.children)}: {child_def.type} {child_def.xid} (Usage: {child_def.usage}), Current localIndex={local_index}", 'debug')

            if local_index >= len(segments):
                self.log(f"{prefix} -> Ran out of segments while expecting schema child {child_def.type} {child_def.xid}.", 'debug')
                if child_def.usage == 'R':
                    self.log(f"{prefix} -> FATAL (for this loop instance): Ran out of segments, but required {child_def.type} {child_def.xid} was expected. Aborting loop processing.", 'error')
                    return self._abort_instance(loop_node, start_index, child_index == 0 or not loop_node.children)
                break

            if child_def.type == 'segment':
                local_index, found = self._match_segment_link(child_def, local_index, loop_node, prefix)
                if found == 0 and child_def.usage == 'R':
                    self.log(f"{prefix} -> FATAL (for this loop instance): Missing required segment {child_def.xid}. Aborting loop processing.", 'error')
                    return self._abort_instance(loop_node, start_index, child_index == 0)
                continue

            trigger = find_first_segment_trigger(child_def)
            if not trigger:
                self.log(f"{prefix} -> ERROR: Loop {child_def.xid} has no trigger segment defined in schema. Skipping processing this loop definition.", 'error')
                if child_def.usage == 'R':
                    self.log(f"{prefix} -> Required loop {child_def.xid} cannot be processed due to schema error. Aborting parent loop.", 'error')
                    return self._abort_instance(loop_node, start_index, child_index == 0)
                continue

            local_index, processed_any = self._match_nested_loop(child_def, trigger, local_index, loop_node, prefix, depth)
            if not processed_any and child_def.usage == 'R':
                self.log(f"{prefix} -> FATAL (for this loop instance): Did not process ANY instances of required nested loop {child_def.xid}. Aborting parent loop processing.", 'error')
                return self._abort_instance(loop_node, start_index, child_index == 0)

        self.log(f"{prefix} Exiting processLoop. Consumed locally: {local_index - start_index}. Final localIndex: {local_index}. Children added: {len(loop_node.children)}", 'debug')
        return LoopResult(loop_node, local_index)

    def _match_segment_link(self, link: StructureSegment, local_index: int, loop_node: CdmLoopInstance, prefix: str):
        segments = self.segments
        max_use = parse_max_use(link.max_use)
        found = 0
        self.log(f"{prefix} -> Looking for segment {link.xid} (maxUse: {max_use}) starting at index {local_index}", 'debug')

        while local_index < len(segments) and segments[local_index].segment_id == link.xid and found < max_use:
            segment = segments[local_index]
            self.log(f"{prefix}  [MATCH] --> Segment {segment.segment_id}(L{segment.line_number}) matched schema segment {link.xid} ('{link.name}')", 'info')
            loop_node.children.append(segment)
            local_index += 1
            found += 1

        self.log(f"{prefix} -> Finished segment {link.xid}. Found: {found}. New localIndex={local_index}", 'debug')
        return local_index, found

    def _match_nested_loop(self, loop_def: StructureLoop, trigger: str, local_index: int,
                           loop_node: CdmLoopInstance, prefix: str, depth: int):
        segments = self.segments
        max_repeat = parse_repeat(loop_def.repeat)
        instance_num = 1
        processed_any = False
        self.log(f"{prefix} -> Looking for nested loop {loop_def.xid} (trigger {trigger}, maxRepeat: {_repeat_label(max_repeat)}, Usage: {loop_def.usage}) starting search at index {local_index}", 'debug')

        while _within(instance_num, max_repeat) and local_index < len(segments):
            current = segments[local_index]
            # Nested instances must start exactly at the cursor; nothing is skipped at this depth.
            if current.segment_id != trigger:
                self.log(f"{prefix}    -> Segment {current.segment_id}(L{current.line_number}) at index {local_index} does not match trigger {trigger}. Breaking instance search for {loop_def.xid}.", 'debug')
                break

            if not validate_trigger_segment(current, loop_def, self.log):
                self.log(f"{prefix}    -> Segment {current.segment_id}(L{current.line_number}) at index {local_index} failed structural trigger validation for loop {loop_def.xid}. Breaking instance search.", 'warn')
                break

            self.log(f"{prefix}  [MATCH-TRIGGER] -> Segment {current.segment_id}(L{current.line_number}) triggers nested loop {loop_def.xid} ('{loop_def.name}') instance #{instance_num}", 'info')
            nested = self._process_loop(loop_def, local_index, instance_num, depth + 1)

            if nested.loop_node is None or nested.end_index <= local_index:
                self.log(f"{prefix}    -> Processing nested loop {loop_def.xid} instance {instance_num} returned null/empty or didn't advance index (endIndex={nested.end_index}, localIndex={local_index}). Breaking instance search.", 'warn')
                break

            self.log(f"{prefix}    -> Successfully processed nested loop {loop_def.xid}#{instance_num}. Consumed {nested.end_index - local_index} segments.", 'debug')
            loop_node.children.append(nested.loop_node)
            local_index = nested.end_index
            instance_num += 1
            processed_any = True

        return local_index, processed_any

    # --- Top level ---
    def _add_orphan(self, index: int, reason: str):
        segment = self.segments[index]
        self.log(f"[BUILD-ORPHAN] Segment {segment.segment_id}(L{segment.line_number}) added as unhandled ({reason})", 'warn')
        self._result.append(segment)
        self._consumed[index] = True

    def _next_unconsumed(self, segment_id: str, start: int) -> int:
        for i in range(start, len(self.segments)):
            if not self._consumed[i] and self.segments[i].segment_id == segment_id:
                return i
        return -1

    def _build_top_level_segment(self, link: StructureSegment):
        segments = self.segments
        max_use = parse_max_use(link.max_use)
        found = 0
        self.log(f"[BUILD] -> Looking for top-level segment {link.xid} (Usage: {link.usage}) starting search at globalIndex {self._cursor}", 'debug')

        while (found < max_use and self._cursor < len(segments)
               and not self._consumed[self._cursor]
               and segments[self._cursor].segment_id == link.xid):
            segment = segments[self._cursor]
            self.log(f"[BUILD-MATCH] Segment {segment.segment_id}(L{segment.line_number}) matched top-level schema segment {link.xid} ('{link.name}') (Instance {found + 1}/{max_use})", 'info')
            self._result.append(segment)
            self._consumed[self._cursor] = True
            self._cursor += 1
            found += 1

        if found == 0:
            self.log(f"[BUILD] -> Top-level segment {link.xid} not found or already consumed starting at index {self._cursor}.", 'debug')
            if link.usage == 'R':
                self.log(f"[BUILD] -> WARNING: Required top-level segment {link.xid} was not found.", 'warn')
        else:
            self.log(f"[BUILD] -> Finished processing top-level segment {link.xid}. Found {found}. Advanced globalIndex to {self._cursor}.", 'debug')

    def _build_top_level_loop(self, loop_def: StructureLoop):
        segments = self.segments
        max_repeat = parse_repeat(loop_def.repeat)
        self.log(f"[BUILD] -> Looking for top-level loop {loop_def.xid}, maxRepeat={_repeat_label(max_repeat)}. Search starting from globalIndex {self._cursor}", 'debug')

        trigger = find_first_segment_trigger(loop_def)
        if not trigger:
            self.log(f"[BUILD] -> ERROR: Schema definition for top-level loop {loop_def.xid} has no trigger segment. Skipping this schema entry.", 'error')
            if loop_def.usage == 'R':
                self.log(f"[BUILD] -> WARNING: Required top-level loop {loop_def.xid} cannot be built due to schema error.", 'warn')
            return
        self.log(f"[BUILD] -> Trigger segment for {loop_def.xid} is {trigger}", 'debug')

        instance_num = 1
        while _within(instance_num, max_repeat) and self._cursor < len(segments):
            loop_start = self._next_unconsumed(trigger, self._cursor)
            if loop_start == -1:
                self.log(f"[BUILD] -> No more unconsumed trigger segments ('{trigger}') found for loop {loop_def.xid}. Breaking instance search.", 'debug')
                break

            for i in range(self._cursor, loop_start):
                if not self._consumed[i]:
                    self._add_orphan(i, f"before loop {loop_def.xid}")
            self._cursor = loop_start

            trigger_segment = segments[self._cursor]
            if not validate_trigger_segment(trigger_segment, loop_def, self.log):
                self._add_orphan(self._cursor, f"invalid trigger for loop {loop_def.xid}")
                self._cursor += 1
                continue

            self.log(f"[BUILD-MATCH-TRIGGER] -> Segment {trigger_segment.segment_id}(L{trigger_segment.line_number}) triggers top-level loop {loop_def.xid} ('{loop_def.name}') instance #{instance_num}", 'info')
            loop_result = self._process_loop(loop_def, self._cursor, instance_num, 1)

            if loop_result.loop_node is None or loop_result.end_index <= self._cursor:
                self.log(f"[BUILD] -> WARN: processLoop for {loop_def.xid}#{instance_num} returned null or failed to advance index (endIndex={loop_result.end_index}, startIndex={self._cursor}). Treating trigger {trigger_segment.segment_id}(L{trigger_segment.line_number}) as unhandled.", 'warn')
                self._add_orphan(self._cursor, f"failed processing for loop {loop_def.xid}")
                self._cursor += 1
                break

            self._result.append(loop_result.loop_node)
            self.log(f"[BUILD] -> Loop {loop_def.xid}#{instance_num} processed successfully, consumed {loop_result.end_index - self._cursor} segments. Advancing globalIndex from {self._cursor} to {loop_result.end_index}.", 'debug')
            for i in range(self._cursor, loop_result.end_index):
                self._consumed[i] = True
            self._cursor = loop_result.end_index
            instance_num += 1

        if instance_num == 1 and loop_def.usage == 'R':
            self.log(f"[BUILD] -> WARNING: Required top-level loop {loop_def.xid} was not found or no instances were successfully processed.", 'warn')

    def build(self) -> List[CdmNode]:
        if not self.segments:
            self.log("[BUILD] No parsed segments to process.", 'info')
            return []
        if not self.schema or not self.schema.structure:
            self.log("[BUILD] Schema structure is missing or empty. Returning flat list.", 'warn')
            return list(self.segments)

        self.log("[BUILD] Starting hierarchical structure build...", 'info')
        self.log(f"[BUILD] Total segments to process: {len(self.segments)}", 'info')

        try:
            for top_level_def in self.schema.structure:
                self.log(f"[BUILD] Processing top-level schema definition: {top_level_def.type} {top_level_def.xid}", 'debug')
                if self._cursor >= len(self.segments):
                    self.log("[BUILD] Reached end of segments while processing schema.", 'debug')
                    break
                if top_level_def.type == 'loop':
                    self._build_top_level_loop(top_level_def)
                else:
                    self._build_top_level_segment(top_level_def)
        except Exception as e:
            # Whatever was not placed yet is surfaced below as trailing orphans.
            self.log(f"[BUILD] Critical error while matching schema structure: {e}", 'error')

        remaining = [i for i, consumed in enumerate(self._consumed) if not consumed]
        if remaining:
            for i in remaining:
                self._add_orphan(i, "remaining at end")
        else:
            self.log("[BUILD] All segments processed or accounted for by schema structure.", 'debug')

        total_in_result = count_segments(self._result)
        self.log(f"[BUILD] Hierarchical structure build finished. Input segments: {len(self.segments)}, Segments in final structure (incl. orphans): {total_in_result}.", 'info')
        if total_in_result != len(self.segments):
            self.log(f"[BUILD] -> INFO: Segment count mismatch ({total_in_result} vs {len(self.segments)}) may indicate segments discarded during initial parsing or complex orphan handling.", 'info')
        return self._result


def build_hierarchical_data(parsed: Optional[CdmDocument], schema: Optional[TransactionSchema],
                            log: LogSink = no_op_sink) -> List[CdmNode]:
    return StructureBuilder(parsed, schema, log).build()
