ASM_GRAMMAR = r"""
    start: item*

    ?item: instruction
         | blob

    // --- Instructions ---
    instruction: MNEMONIC operands? code_block*

    operands: operand ("," operand)*
    ?operand: SIGNED_INT    -> integer
            | STACK         -> stack_register
            | CTRL          -> control_register
            | HEXLIT        -> bitstring
            | cell_block
            | dict_block

    code_block: "{" item* "}"

    // --- Literal cells ---
    blob: ".blob" HEXLIT
    cell_block: ".cell" "{" blob* (cell_block* | cell_code) "}"
    cell_code: "{" item* "}"

    dict_block: ".dict" "{" dict_entry* "}"
    dict_entry: SIGNED_INT "=>" code_block

    MNEMONIC: /[A-Z][A-Z0-9_]*/
    STACK: /s\d+/
    CTRL: /c\d+/
    HEXLIT: /x(\{[0-9A-Fa-f]*_?\}|[0-9A-Fa-f]*_?)/
    COMMENT: /;;[^\n]*/

    %import common.SIGNED_INT
    %import common.WS
    %ignore WS
    %ignore COMMENT
"""
